"""
Провайдер Yandex Vision OCR (синхронный recognizeText).

У API жёсткая квота запросов в секунду, поэтому каждый вызов
сначала забирает токен у TokenBucketRateLimiter.

Ответ API возвращается целиком как JSON (StructuredJSON): клиенту
нужны блоки, строки и координаты, а не только текст.
"""

import base64
import logging
from typing import Optional

import httpx

from ocr_gateway.recognizers.base import (
    RawText,
    RecognitionError,
    RecognitionPayload,
    Recognizer,
    StructuredJSON,
    detect_mime_type,
)
from ocr_gateway.services.rate_limiter import RateLimiterTimeout, TokenBucketRateLimiter

logger = logging.getLogger(__name__)

YANDEX_OCR_ENDPOINT = "https://ocr.api.cloud.yandex.net/ocr/v1/recognizeText"


class YandexRecognizer(Recognizer):
    """
    Распознавание через Yandex Vision OCR API.

    Attributes:
        api_key: API ключ сервисного аккаунта
        folder_id: идентификатор каталога Yandex Cloud
        model: "page" (печатный текст) или "handwritten"
        language_codes: языки распознавания
        rate_limiter: общий для всех вызовов ограничитель квоты
        acquire_timeout: сколько ждать токен квоты, секунд
    """

    name = "yandex"

    def __init__(
        self,
        api_key: str,
        folder_id: str,
        model: str = "page",
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        language_codes: Optional[list[str]] = None,
        acquire_timeout: float = 120.0,
        http_timeout: float = 240.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.folder_id = folder_id
        self.model = model or "page"
        self.language_codes = language_codes or ["ru", "en"]
        self.rate_limiter = rate_limiter or TokenBucketRateLimiter(10)
        self.acquire_timeout = acquire_timeout
        self.client = client or httpx.Client(timeout=httpx.Timeout(http_timeout))

    def recognize_from_bytes(self, data: bytes) -> RecognitionPayload:
        if not data:
            logger.error("Yandex: пустые данные")
            raise RecognitionError("empty data")

        try:
            self.rate_limiter.acquire(timeout=self.acquire_timeout)
        except RateLimiterTimeout as e:
            logger.error(f"Yandex: не дождались квоты: {e}")
            raise RecognitionError(f"rate limiter timeout: {e}") from e

        # Yandex принимает только "PNG" или "JPEG"
        mime_type = "PNG" if detect_mime_type(data) == "image/png" else "JPEG"

        request_body = {
            "mimeType": mime_type,
            "languageCodes": self.language_codes,
            "model": self.model,
            "content": base64.b64encode(data).decode("ascii"),
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "x-folder-id": self.folder_id,
            "x-data-logging-enabled": "false",
        }

        try:
            response = self.client.post(
                YANDEX_OCR_ENDPOINT,
                json=request_body,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error(f"Yandex: ошибка отправки запроса: {e}")
            raise RecognitionError(f"failed to send request: {e}") from e

        if response.status_code != 200:
            message = _error_message(response)
            if message:
                error = f"yandex API error (status {response.status_code}): {message}"
            else:
                error = (
                    f"yandex API returned status {response.status_code}: "
                    f"{response.text}"
                )
            logger.error(f"Yandex: {error}")
            raise RecognitionError(error)

        try:
            body = response.json()
        except ValueError as e:
            logger.error(f"Yandex: некорректный JSON в ответе: {e}")
            raise RecognitionError(f"failed to unmarshal response: {e}") from e

        result = body.get("result") if isinstance(body, dict) else None
        if not isinstance(result, dict) or not result.get("textAnnotation"):
            logger.warning("Yandex: пустой результат распознавания")
            return RawText("")

        return StructuredJSON(response.text)

    def close(self) -> None:
        self.rate_limiter.stop()
        self.client.close()


def _error_message(response: httpx.Response) -> str:
    """Достаёт message из JSON ошибки Yandex API, если он есть."""
    try:
        body = response.json()
    except ValueError:
        return ""

    if isinstance(body, dict):
        return str(body.get("message") or "")
    return ""
