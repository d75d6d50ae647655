"""
In-memory история результатов OCR по клиентам.

Особенности:
    - Хранение в памяти (без персистентности)
    - Клиент определяется заголовком X-Client-ID
    - Новые записи добавляются в начало списка
    - Клиенты без активности дольше TTL удаляются фоновым потоком
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ocr_gateway.schemas import HistoryEntry

logger = logging.getLogger(__name__)


@dataclass
class _ClientHistory:
    entries: list[HistoryEntry] = field(default_factory=list)
    last_access: datetime = field(default_factory=datetime.now)


class HistoryStore:
    """
    Хранилище истории с вытеснением неактивных клиентов.

    Attributes:
        ttl: время жизни истории клиента без активности
        cleanup_interval: период запуска очистки в секундах
    """

    def __init__(self, ttl: timedelta, cleanup_interval: float = 600.0):
        self.ttl = ttl
        self.cleanup_interval = cleanup_interval

        self._data: dict[str, _ClientHistory] = {}
        self._lock = threading.Lock()

        self._stop_event = threading.Event()
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop,
            name="history-cleanup",
            daemon=True,
        )
        self._cleanup_thread.start()

    def get(self, client_id: str) -> list[HistoryEntry]:
        """
        Возвращает копию истории клиента (новые записи первыми).

        Args:
            client_id: идентификатор клиента

        Returns:
            list[HistoryEntry]: записи или пустой список
        """
        with self._lock:
            history = self._data.get(client_id)
            if history is None:
                return []
            return list(history.entries)

    def add(self, client_id: str, entry: HistoryEntry) -> None:
        """Добавляет запись в начало истории клиента."""
        with self._lock:
            history = self._data.setdefault(client_id, _ClientHistory())
            history.entries.insert(0, entry)
            history.last_access = datetime.now()

        logger.info(f"История: клиент {client_id}, добавлена запись {entry.id}")

    def delete(self, client_id: str, entry_id: str) -> bool:
        """
        Удаляет запись из истории клиента.

        Returns:
            bool: True если запись была найдена и удалена
        """
        with self._lock:
            history = self._data.get(client_id)
            if history is None:
                return False

            for i, entry in enumerate(history.entries):
                if entry.id == entry_id:
                    del history.entries[i]
                    history.last_access = datetime.now()
                    return True

        return False

    def clear(self, client_id: str) -> None:
        """Удаляет всю историю клиента."""
        with self._lock:
            self._data.pop(client_id, None)

    def evict_expired(self, now: Optional[datetime] = None) -> int:
        """
        Удаляет клиентов, неактивных дольше ttl.

        Args:
            now: текущее время (для тестов)

        Returns:
            int: количество удалённых клиентов
        """
        now = now or datetime.now()

        with self._lock:
            expired = [
                client_id
                for client_id, history in self._data.items()
                if now - history.last_access > self.ttl
            ]
            for client_id in expired:
                del self._data[client_id]

        if expired:
            logger.info(f"История: удалено {len(expired)} неактивных клиентов")

        return len(expired)

    def stats(self) -> dict:
        """Количество клиентов и записей — для health."""
        with self._lock:
            return {
                "clients_count": len(self._data),
                "entries_count": sum(len(h.entries) for h in self._data.values()),
            }

    def stop(self) -> None:
        """Останавливает фоновую очистку. Повторные вызовы безопасны."""
        self._stop_event.set()
        if self._cleanup_thread.is_alive():
            self._cleanup_thread.join()

    def _cleanup_loop(self) -> None:
        while not self._stop_event.wait(self.cleanup_interval):
            self.evict_expired()
