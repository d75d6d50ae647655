"""
Батч-процессор — ядро OCR Gateway.

Превращает N независимых изображений в один упорядоченный BatchResult:
    1. Для каждого изображения запускается отдельная задача в ThreadPoolExecutor
    2. Задача занимает слот WorkerPool (ограничение параллелизма)
    3. Валидация размера и формата, чтение файла
    4. Вызов провайдера, нормализация результата в JSON фрагмент
    5. Слот возвращается при любом исходе

Ошибка одного изображения записывается в его результат и не влияет
на остальные. Результаты пишутся в слоты по индексу, поэтому порядок
ответа совпадает с порядком запроса, а не с порядком завершения.
"""

import logging
import os
import time
from collections.abc import Collection, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Callable, Optional

from ocr_gateway.recognizers.base import (
    RecognitionError,
    Recognizer,
    to_json_fragment,
)
from ocr_gateway.schemas import BatchResult, ImageTask, RecognitionOutcome
from ocr_gateway.services.worker_pool import WorkerPool, WorkerPoolTimeout

logger = logging.getLogger(__name__)


class BatchProcessingError(Exception):
    """Внутренняя ошибка, из-за которой не удалось обработать весь батч."""


class BatchProcessor:
    """
    Обработчик батча изображений через один OCR провайдер.

    WorkerPool передаётся явно: один пул на процесс ограничивает
    суммарную нагрузку на провайдера от всех одновременных запросов.

    Attributes:
        recognizer: провайдер OCR
        batch_timeout: лимит времени на ожидание слотов (None — без лимита)
    """

    def __init__(
        self,
        recognizer: Recognizer,
        worker_pool: WorkerPool,
        batch_timeout: Optional[float] = None,
    ):
        self.recognizer = recognizer
        self.worker_pool = worker_pool
        self.batch_timeout = batch_timeout or None

    def process_images(
        self,
        images: Sequence[ImageTask],
        max_size_bytes: int,
        supported_formats: Collection[str],
    ) -> BatchResult:
        """
        Распознаёт все изображения батча параллельно.

        Проверка непустого списка и лимита количества изображений
        выполняется на стороне HTTP слоя.

        Args:
            images: изображения в порядке запроса
            max_size_bytes: максимальный размер одного изображения
            supported_formats: допустимые расширения файлов (без точки)

        Returns:
            BatchResult: ровно len(images) результатов в порядке запроса

        Raises:
            BatchProcessingError: при внутренней ошибке, не связанной
                с конкретным изображением
        """
        total = len(images)
        formats = {fmt.lower().lstrip(".") for fmt in supported_formats}
        deadline = (
            time.monotonic() + self.batch_timeout if self.batch_timeout else None
        )

        logger.info(
            f"Начало обработки батча: {total} изображений, "
            f"провайдер: {self.recognizer.name}"
        )
        start = time.perf_counter()

        # Слот на каждый индекс: задача пишет только в свой элемент
        slots: list[Optional[RecognitionOutcome]] = [None] * total

        if total:
            with ThreadPoolExecutor(
                max_workers=total,
                thread_name_prefix="ocr-image",
            ) as executor:
                futures = [
                    executor.submit(
                        self._run_task,
                        index,
                        image,
                        slots,
                        max_size_bytes,
                        formats,
                        deadline,
                    )
                    for index, image in enumerate(images)
                ]
                wait(futures)

            for future in futures:
                error = future.exception()
                if error is not None:
                    logger.error(f"Внутренняя ошибка обработки батча: {error}")
                    raise BatchProcessingError(str(error)) from error

        if any(outcome is None for outcome in slots):
            raise BatchProcessingError("not every image produced a result")

        results: list[RecognitionOutcome] = slots  # type: ignore[assignment]
        successful = sum(1 for outcome in results if outcome.ok)

        duration = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"Батч обработан: {successful}/{total} успешно за {duration}ms"
        )

        return BatchResult(
            results=results,
            total_images=total,
            successful=successful,
            failed=total - successful,
            processed_at=datetime.now(timezone.utc),
        )

    def _run_task(
        self,
        index: int,
        image: ImageTask,
        slots: list[Optional[RecognitionOutcome]],
        max_size_bytes: int,
        formats: set[str],
        deadline: Optional[float],
    ) -> None:
        """Обрабатывает одно изображение и пишет результат в slots[index]."""
        timeout = None
        if deadline is not None:
            timeout = max(0.0, deadline - time.monotonic())

        try:
            with self.worker_pool.slot(timeout=timeout):
                outcome = self._process_image(image, max_size_bytes, formats)
        except WorkerPoolTimeout:
            logger.warning(f"{image.filename}: не хватило времени на слот")
            outcome = RecognitionOutcome(
                filename=image.filename,
                error="batch deadline exceeded before processing started",
            )

        slots[index] = outcome

    def _process_image(
        self,
        image: ImageTask,
        max_size_bytes: int,
        formats: set[str],
    ) -> RecognitionOutcome:
        """
        Валидирует, читает и распознаёт одно изображение.

        Все ошибки изображения превращаются в RecognitionOutcome с error.
        """
        failure = _validate_image(image, max_size_bytes, formats)
        if failure:
            logger.warning(f"{image.filename}: {failure}")
            return RecognitionOutcome(filename=image.filename, error=failure)

        try:
            content = image.read_content()
        except (OSError, ValueError) as e:
            logger.error(f"{image.filename}: ошибка чтения файла: {e}")
            return RecognitionOutcome(
                filename=image.filename,
                error=f"failed to read file: {e}",
            )

        return _recognize(self.recognizer.recognize_from_bytes, image.filename, content)


def _validate_image(
    image: ImageTask,
    max_size_bytes: int,
    formats: set[str],
) -> str:
    """
    Проверяет размер и формат изображения.

    Returns:
        str: описание ошибки или пустая строка, если всё в порядке
    """
    if image.size_bytes > max_size_bytes:
        return (
            f"file size {image.size_bytes} bytes exceeds maximum "
            f"of {max_size_bytes} bytes"
        )

    ext = file_extension(image.filename)
    if ext not in formats:
        return f"unsupported format: {ext}"

    return ""


def file_extension(filename: str) -> str:
    """Расширение файла в нижнем регистре без точки ("scan.TIFF" → "tiff")."""
    return os.path.splitext(filename)[1].lstrip(".").lower()


def _recognize(
    recognize: Callable[[bytes], object],
    filename: str,
    content: bytes,
) -> RecognitionOutcome:
    try:
        payload = recognize(content)
        text = to_json_fragment(payload)
    except RecognitionError as e:
        logger.error(f"{filename}: {e}")
        return RecognitionOutcome(filename=filename, error=str(e))
    except Exception as e:
        logger.exception(f"{filename}: непредвиденная ошибка провайдера: {e}")
        return RecognitionOutcome(
            filename=filename,
            error=f"recognition failed: {e}",
        )

    if text == '""':
        logger.warning(f"{filename}: провайдер вернул пустой результат")

    return RecognitionOutcome(filename=filename, text=text)
