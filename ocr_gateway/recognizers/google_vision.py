"""Провайдер Google Cloud Vision (TEXT_DETECTION)."""

import logging
from typing import Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import vision
from google.oauth2 import service_account

from ocr_gateway.recognizers.base import RawText, RecognitionError, Recognizer

logger = logging.getLogger(__name__)


class GoogleVisionRecognizer(Recognizer):
    """
    Распознавание через Google Vision API.

    Клиент создаётся один раз из JSON ключа сервисного аккаунта;
    без пути к ключу используются учётные данные по умолчанию
    (GOOGLE_APPLICATION_CREDENTIALS).
    """

    name = "google"

    def __init__(
        self,
        credentials_path: str = "",
        client: Optional[vision.ImageAnnotatorClient] = None,
    ):
        if client is not None:
            self.client = client
        elif credentials_path:
            credentials = service_account.Credentials.from_service_account_file(
                credentials_path,
                scopes=["https://www.googleapis.com/auth/cloud-vision"],
            )
            self.client = vision.ImageAnnotatorClient(credentials=credentials)
        else:
            self.client = vision.ImageAnnotatorClient()

    def recognize_from_bytes(self, data: bytes) -> RawText:
        if not data:
            logger.error("Google Vision: пустые данные")
            raise RecognitionError("empty data")

        try:
            response = self.client.text_detection(image=vision.Image(content=data))
        except google_exceptions.GoogleAPIError as e:
            logger.error(f"Google Vision: ошибка запроса: {e}")
            raise RecognitionError(f"google vision API error: {e}") from e

        if response.error.message:
            error = f"google vision API error: {response.error.message}"
            logger.error(f"Google Vision: {error}")
            raise RecognitionError(error)

        text = extract_text(response)
        if not text:
            logger.warning("Google Vision: пустой результат распознавания")

        return RawText(text)

    def close(self) -> None:
        transport = getattr(self.client, "transport", None)
        if transport is not None:
            transport.close()


def extract_text(response) -> str:
    """
    Достаёт текст из AnnotateImageResponse.

    Первая text_annotation содержит весь текст изображения.
    Если её нет — текст собирается из full_text_annotation:
    символы в слова, слова через пробел, параграфы с новой строки.
    """
    if response.text_annotations:
        return response.text_annotations[0].description

    lines = []
    for page in response.full_text_annotation.pages:
        for block in page.blocks:
            for paragraph in block.paragraphs:
                words = [
                    "".join(symbol.text for symbol in word.symbols)
                    for word in paragraph.words
                ]
                lines.append(" ".join(words))

    return "\n".join(lines)
