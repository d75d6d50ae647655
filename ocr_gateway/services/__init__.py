"""
Сервисы OCR Gateway.

Модули:
    - rate_limiter: token bucket для провайдеров с квотой
    - worker_pool: ограничение числа одновременных распознаваний
    - batch_processor: параллельная обработка батча изображений
    - history_store: in-memory история результатов по клиентам
"""

from ocr_gateway.services.batch_processor import BatchProcessingError, BatchProcessor
from ocr_gateway.services.history_store import HistoryStore
from ocr_gateway.services.rate_limiter import RateLimiterTimeout, TokenBucketRateLimiter
from ocr_gateway.services.worker_pool import WorkerPool, WorkerPoolTimeout

__all__ = [
    "BatchProcessor",
    "BatchProcessingError",
    "HistoryStore",
    "TokenBucketRateLimiter",
    "RateLimiterTimeout",
    "WorkerPool",
    "WorkerPoolTimeout",
]
