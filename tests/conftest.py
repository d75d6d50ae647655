import threading
import time
from io import BytesIO
from typing import Callable, Optional

import pytest
from PIL import Image

from ocr_gateway.recognizers.base import RawText, RecognitionPayload, Recognizer
from ocr_gateway.services.rate_limiter import TokenBucketRateLimiter


class StubRecognizer(Recognizer):
    """
    Провайдер для тестов: считает вызовы и пиковый параллелизм.

    По умолчанию возвращает RawText с содержимым файла.
    """

    name = "stub"

    def __init__(
        self,
        handler: Optional[Callable[[bytes], RecognitionPayload]] = None,
        delay: float = 0.0,
    ):
        self.handler = handler or (lambda data: RawText(data.decode("utf-8")))
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.closed = False
        self._lock = threading.Lock()

    def recognize_from_bytes(self, data: bytes) -> RecognitionPayload:
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            return self.handler(data)
        finally:
            with self._lock:
                self.active -= 1

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def stub_recognizer() -> StubRecognizer:
    return StubRecognizer()


@pytest.fixture
def make_limiter():
    """Создаёт rate limiter'ы и останавливает их после теста."""
    limiters: list[TokenBucketRateLimiter] = []

    def _make(requests_per_second: int) -> TokenBucketRateLimiter:
        limiter = TokenBucketRateLimiter(requests_per_second)
        limiters.append(limiter)
        return limiter

    yield _make

    for limiter in limiters:
        limiter.stop()


def make_image_bytes(size=(60, 30), color=(255, 255, 255), fmt="PNG") -> bytes:
    image = Image.new("RGB", size, color)
    buffer = BytesIO()
    image.save(buffer, fmt)
    return buffer.getvalue()
