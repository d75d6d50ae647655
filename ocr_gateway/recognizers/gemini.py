"""
Провайдер Gemini (LLM OCR для архивных документов).

Изображение отправляется в generateContent REST API с JSON схемой
ответа. Модель возвращает JSON документ, который передаётся клиенту
как StructuredJSON.
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

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models"

RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "summary": {
            "type": "STRING",
            "description": "Краткое содержание документа, 2-4 предложения, "
            "только по распознанному тексту.",
        },
        "language": {
            "type": "STRING",
            "description": "Язык документа.",
            "enum": ["ru"],
        },
        "document_title": {
            "type": "STRING",
            "description": "Заголовок документа или пустая строка.",
        },
        "text_markdown": {
            "type": "STRING",
            "description": "Полный текст документа в Markdown, таблицы — "
            "Markdown таблицами.",
        },
        "notes": {
            "type": "STRING",
            "description": "Сомнительные места распознавания или пустая строка.",
        },
        "warnings": {
            "type": "ARRAY",
            "description": "Предупреждения о качестве изображения.",
            "items": {"type": "STRING"},
        },
    },
    "required": [
        "summary",
        "language",
        "document_title",
        "text_markdown",
        "notes",
        "warnings",
    ],
    "propertyOrdering": [
        "summary",
        "language",
        "document_title",
        "text_markdown",
        "notes",
        "warnings",
    ],
}

SYSTEM_INSTRUCTION = """\
Ты оцифровываешь старые документы: архивные бумаги, рукописи, тексты
в дореформенной орфографии, с выцветшими чернилами и повреждениями.
Извлеки весь видимый текст с изображения и верни только JSON по схеме.

- Не додумывай текст. Нечитаемое отмечай маркером ⟦неразборчиво⟧,
  варианты прочтения — ⟦возможн.: ...⟧, и описывай такие места в notes.
- Сохраняй орфографию оригинала, переносы строк, абзацы, заголовки и списки.
- Таблицы оформляй Markdown таблицами.
- Подписи и печати отмечай как *[Подпись]*: ... и *[Печать]*: ...
- Несколько страниц или фрагментов разделяй строкой ---.
"""


class GeminiRecognizer(Recognizer):
    """
    Распознавание через Gemini generateContent API.

    Attributes:
        api_key: ключ Gemini API
        model: имя модели
    """

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-3-pro-preview",
        http_timeout: float = 240.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.model = model or "gemini-3-pro-preview"
        self.client = client or httpx.Client(timeout=httpx.Timeout(http_timeout))

    def recognize_from_bytes(self, data: bytes) -> RecognitionPayload:
        if not data:
            logger.error("Gemini: пустые данные")
            raise RecognitionError("empty data")

        if not self.api_key:
            logger.error("Gemini: не задан API ключ")
            raise RecognitionError("gemini API key is empty")

        try:
            response = self.client.post(
                f"{GEMINI_API_URL}/{self.model}:generateContent",
                json=self._build_request(data),
                headers={"x-goog-api-key": self.api_key},
            )
        except httpx.HTTPError as e:
            logger.error(f"Gemini: ошибка отправки запроса: {e}")
            raise RecognitionError(f"failed to generate content: {e}") from e

        if response.status_code != 200:
            error = (
                f"gemini API returned status {response.status_code}: "
                f"{response.text}"
            )
            logger.error(f"Gemini: {error}")
            raise RecognitionError(error)

        try:
            body = response.json()
        except ValueError as e:
            logger.error(f"Gemini: некорректный JSON в ответе: {e}")
            raise RecognitionError(f"failed to unmarshal response: {e}") from e

        text = _collect_text(body)
        if not text:
            logger.warning("Gemini: пустой результат распознавания")
            return RawText("")

        return StructuredJSON(text)

    def _build_request(self, data: bytes) -> dict:
        return {
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {
                            "inlineData": {
                                "mimeType": detect_mime_type(data),
                                "data": base64.b64encode(data).decode("ascii"),
                            }
                        }
                    ],
                }
            ],
            "generationConfig": {
                "temperature": 0.3,
                "topP": 1,
                "thinkingConfig": {"thinkingBudget": 16000},
                "mediaResolution": "MEDIA_RESOLUTION_HIGH",
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }

    def close(self) -> None:
        self.client.close()


def _collect_text(body: dict) -> str:
    """Склеивает текстовые части первого кандидата, пропуская мысли модели."""
    candidates = body.get("candidates") or []
    if not candidates:
        return ""

    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(
        part.get("text", "") for part in parts if not part.get("thought")
    )
