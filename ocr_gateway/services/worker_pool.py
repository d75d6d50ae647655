"""
Пул слотов для ограничения числа одновременных распознаваний.

Слот берётся перед вызовом провайдера и возвращается при любом
исходе — успех, ошибка или исключение.
"""

import threading
from contextlib import contextmanager
from typing import Iterator, Optional


class WorkerPoolTimeout(Exception):
    """Свободный слот не появился до истечения таймаута."""


class WorkerPool:
    """
    Ограничитель параллелизма на основе семафора.

    Attributes:
        max_workers: количество слотов
    """

    def __init__(self, max_workers: int):
        if max_workers <= 0:
            raise ValueError(f"max_workers должен быть > 0, получено {max_workers}")

        self.max_workers = max_workers
        self._slots = threading.BoundedSemaphore(max_workers)

    @contextmanager
    def slot(self, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Занимает слот на время блока with.

        Args:
            timeout: максимальное ожидание слота в секундах (None — без ограничения)

        Raises:
            WorkerPoolTimeout: слот не освободился за timeout
        """
        if not self._slots.acquire(timeout=timeout):
            raise WorkerPoolTimeout(f"no free worker slot within {timeout} seconds")

        try:
            yield
        finally:
            self._slots.release()
