"""
Схемы данных OCR Gateway.

Включает:
    - Pydantic модели для API (ответ батча, ошибки, история)
    - Внутренние dataclass'ы пайплайна (задача, результат, итог батча)
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, BinaryIO, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_serializer


# =============================================================================
# Pydantic модели для API
# =============================================================================


class OCRResult(BaseModel):
    """
    Результат распознавания одного изображения.

    Attributes:
        filename: имя файла из запроса
        text: распознанный текст (строка) или JSON от провайдера
        error: сообщение об ошибке, если изображение не распознано
    """

    filename: str
    text: Any = ""
    error: Optional[str] = None

    @model_serializer(mode="wrap")
    def _omit_empty_error(self, handler) -> dict[str, Any]:
        # text остаётся в ответе даже при значении null
        data = handler(self)
        if not data.get("error"):
            data.pop("error", None)
        return data


class OCRResponse(BaseModel):
    """
    Ответ API с результатами OCR батча.

    Порядок results совпадает с порядком изображений в запросе.

    Attributes:
        results: результаты по изображениям
        total_images: количество изображений в запросе
        successful: количество успешно распознанных
        failed: количество изображений с ошибкой
        processed_at: время завершения обработки (UTC)
    """

    results: list[OCRResult] = []
    total_images: int
    successful: int
    failed: int
    processed_at: datetime


class ErrorResponse(BaseModel):
    """Тело ответа при ошибке запроса."""

    error: str
    message: Optional[str] = None


class HistoryEntryModel(BaseModel):
    """
    Запись истории клиента в формате API.

    Attributes:
        id: идентификатор записи
        image_base64: изображение в base64
        ocr_result: результат OCR (произвольный JSON)
        created_at: время создания записи
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    image_base64: str = Field(alias="imageBase64")
    ocr_result: Any = Field(default=None, alias="ocrResult")
    created_at: datetime = Field(alias="createdAt")


class AddHistoryRequest(BaseModel):
    """Тело запроса POST /api/v1/history."""

    model_config = ConfigDict(populate_by_name=True)

    image_base64: str = Field(default="", alias="imageBase64")
    ocr_result: Any = Field(default=None, alias="ocrResult")


# =============================================================================
# Внутренние dataclass'ы для пайплайна
# =============================================================================


@dataclass(frozen=True)
class ImageTask:
    """
    Одно изображение из батча.

    Attributes:
        filename: имя файла (по расширению проверяется формат)
        size_bytes: заявленный размер файла
        content: содержимое — байты или открытый бинарный поток
    """

    filename: str
    size_bytes: int
    content: Union[bytes, BinaryIO]

    def read_content(self) -> bytes:
        """
        Читает содержимое изображения.

        Returns:
            bytes: данные файла

        Raises:
            OSError, ValueError: если поток не читается (например, закрыт)
        """
        if isinstance(self.content, (bytes, bytearray)):
            return bytes(self.content)

        self.content.seek(0)
        return self.content.read()


@dataclass
class RecognitionOutcome:
    """
    Результат распознавания одного изображения.

    Attributes:
        filename: имя файла
        text: валидный JSON фрагмент (строковый литерал или документ)
        error: текст ошибки, пустая строка при успехе
    """

    filename: str
    text: str = '""'
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass
class BatchResult:
    """
    Итог обработки батча.

    Attributes:
        results: результаты в порядке входных изображений
        total_images: всего изображений
        successful: результатов без ошибки
        failed: результатов с ошибкой
        processed_at: время завершения обработки
    """

    results: list[RecognitionOutcome]
    total_images: int
    successful: int
    failed: int
    processed_at: datetime


@dataclass
class HistoryEntry:
    """
    Запись в истории клиента.

    Attributes:
        id: идентификатор (наносекундная метка времени)
        image_base64: изображение в base64
        ocr_result: результат OCR, как его прислал клиент
        created_at: время добавления
    """

    id: str
    image_base64: str
    ocr_result: Any
    created_at: datetime = field(default_factory=datetime.now)
