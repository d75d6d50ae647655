"""
Базовый интерфейс OCR провайдеров.

Провайдер распознаёт ОДНО изображение и явно указывает тип результата:
    - RawText: обычный текст (Tesseract, Google Vision)
    - StructuredJSON: готовый JSON документ (Yandex, Gemini)

Батч-процессор превращает результат в валидный JSON фрагмент через
to_json_fragment(), поэтому поле text ответа всегда корректный JSON.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Union

logger = logging.getLogger(__name__)


class RecognitionError(Exception):
    """Ошибка провайдера: сеть, авторизация, некорректный ответ, квота."""


@dataclass(frozen=True)
class RawText:
    """Распознанный текст, в ответе будет строковым литералом."""

    text: str


@dataclass(frozen=True)
class StructuredJSON:
    """JSON документ от провайдера, в ответ попадает как есть."""

    raw: str


RecognitionPayload = Union[RawText, StructuredJSON]


class Recognizer(ABC):
    """
    Провайдер OCR для одного изображения.

    Реализации должны быть потокобезопасными: батч-процессор вызывает
    recognize_from_bytes из нескольких потоков одновременно.
    """

    name: str = "base"

    @abstractmethod
    def recognize_from_bytes(self, data: bytes) -> RecognitionPayload:
        """
        Распознаёт текст на изображении.

        Args:
            data: содержимое файла изображения

        Returns:
            RawText или StructuredJSON

        Raises:
            RecognitionError: при любой ошибке распознавания
        """
        ...

    def close(self) -> None:
        """Освобождает ресурсы провайдера (HTTP клиенты, rate limiter)."""


def detect_mime_type(data: bytes) -> str:
    """
    Определяет MIME тип изображения по сигнатуре.

    Поддерживаются PNG и WEBP, всё остальное считается JPEG.

    Args:
        data: содержимое файла

    Returns:
        str: "image/png", "image/webp" или "image/jpeg"
    """
    if data[:4] == b"\x89PNG":
        return "image/png"
    if len(data) > 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def to_json_fragment(payload: Union[RecognitionPayload, str]) -> str:
    """
    Превращает результат провайдера в валидный JSON фрагмент.

    Правила:
        - RawText → JSON строка ("hello" → '"hello"')
        - StructuredJSON → без изменений, если это валидный JSON, иначе
          JSON строка (с предупреждением в логе)
        - str (сторонний провайдер без явного типа) → как есть, если это
          валидный JSON, иначе JSON строка

    NaN и Infinity валидным JSON не считаются.

    Args:
        payload: результат recognize_from_bytes

    Returns:
        str: JSON фрагмент
    """
    if isinstance(payload, RawText):
        return json.dumps(payload.text, ensure_ascii=False)

    if isinstance(payload, StructuredJSON):
        if _is_valid_json(payload.raw):
            return payload.raw
        logger.warning("Провайдер вернул невалидный JSON, сохраняем как строку")
        return json.dumps(payload.raw, ensure_ascii=False)

    if isinstance(payload, str):
        if _is_valid_json(payload):
            return payload
        return json.dumps(payload, ensure_ascii=False)

    raise TypeError(f"unsupported recognition payload: {type(payload).__name__}")


def _reject_constant(name: str):
    raise ValueError(f"non-standard JSON constant: {name}")


def _is_valid_json(text: str) -> bool:
    try:
        json.loads(text, parse_constant=_reject_constant)
    except ValueError:
        return False
    return True
