"""
OCR Gateway — HTTP шлюз для пакетного распознавания изображений.

Принимает батч изображений, распознаёт каждое через выбранный
провайдер (Tesseract, Yandex Vision, Google Vision, Gemini) с
ограничением параллелизма и квоты, собирает результаты в один ответ.
Хранит историю результатов клиентов в памяти с TTL.
"""

from ocr_gateway.config import settings
from ocr_gateway.schemas import BatchResult, ImageTask, OCRResponse, RecognitionOutcome

__all__ = [
    "settings",
    "ImageTask",
    "RecognitionOutcome",
    "BatchResult",
    "OCRResponse",
]
