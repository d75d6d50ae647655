"""
Token bucket для провайдеров с жёсткой квотой запросов в секунду.

Корзина — ограниченная очередь токенов ёмкостью requests_per_second,
изначально заполненная. Фоновый поток добавляет один токен каждые
1/requests_per_second секунд; если корзина полна, токен отбрасывается.

Каждая операция с корзиной — одна атомарная операция queue.Queue,
поэтому токен не может быть выдан дважды или потерян.
"""

import logging
import queue
import threading
import time
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_REQUESTS_PER_SECOND = 10

# Шаг ожидания при acquire с событием отмены
_CANCEL_POLL_SECONDS = 0.05


class RateLimiterTimeout(Exception):
    """Токен не получен до истечения таймаута или отмены."""


class TokenBucketRateLimiter:
    """
    Ограничитель частоты вызовов по алгоритму token bucket.

    Один экземпляр на провайдера, общий для всех потоков, которые
    к нему обращаются. После использования нужно вызвать stop().

    Attributes:
        capacity: ёмкость корзины (= запросов в секунду)
        refill_interval: интервал пополнения в секундах
    """

    def __init__(self, requests_per_second: int):
        if requests_per_second <= 0:
            logger.warning(
                f"Некорректная квота {requests_per_second} req/s, "
                f"используется {DEFAULT_REQUESTS_PER_SECOND}"
            )
            requests_per_second = DEFAULT_REQUESTS_PER_SECOND

        self.capacity = requests_per_second
        self.refill_interval = 1.0 / requests_per_second

        self._tokens: queue.Queue = queue.Queue(maxsize=requests_per_second)
        for _ in range(requests_per_second):
            self._tokens.put_nowait(None)

        self._stop_event = threading.Event()
        self._stop_lock = threading.Lock()
        self._stopped = False

        self._refill_thread = threading.Thread(
            target=self._refill,
            name="rate-limiter-refill",
            daemon=True,
        )
        self._refill_thread.start()

    def _refill(self) -> None:
        """Цикл пополнения корзины, работает до stop()."""
        next_tick = time.monotonic() + self.refill_interval

        while not self._stop_event.wait(max(0.0, next_tick - time.monotonic())):
            try:
                self._tokens.put_nowait(None)
            except queue.Full:
                # Корзина полна — токен отбрасывается
                pass

            # Пропущенные тики не накапливаются
            next_tick = max(next_tick + self.refill_interval, time.monotonic())

    def acquire(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """
        Забирает один токен, при необходимости ожидая пополнения.

        Args:
            timeout: максимальное время ожидания в секундах (None — без ограничения)
            cancel: событие отмены; если установлено, ожидание прерывается

        Raises:
            RateLimiterTimeout: токен не получен за timeout или ожидание отменено
        """
        # Истёкший дедлайн даёт отрицательный timeout
        if timeout is not None:
            timeout = max(0.0, timeout)

        if cancel is None:
            try:
                self._tokens.get(timeout=timeout)
                return
            except queue.Empty:
                raise RateLimiterTimeout(
                    f"no token available within {timeout} seconds"
                ) from None

        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            if cancel.is_set():
                raise RateLimiterTimeout("token wait cancelled")

            if self.try_acquire():
                return

            wait = _CANCEL_POLL_SECONDS
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise RateLimiterTimeout(
                        f"no token available within {timeout} seconds"
                    )
                wait = min(wait, remaining)

            try:
                self._tokens.get(timeout=wait)
                return
            except queue.Empty:
                continue

    def try_acquire(self) -> bool:
        """
        Забирает токен без ожидания.

        Returns:
            bool: True если токен получен, False если корзина пуста
        """
        try:
            self._tokens.get_nowait()
            return True
        except queue.Empty:
            return False

    def available(self) -> int:
        """Количество токенов в корзине на текущий момент."""
        return self._tokens.qsize()

    def stop(self) -> None:
        """
        Останавливает поток пополнения и дожидается его завершения.

        Повторные вызовы ничего не делают.
        """
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True
            self._stop_event.set()
            self._refill_thread.join()

        logger.debug("Rate limiter остановлен")

    def __enter__(self) -> "TokenBucketRateLimiter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
