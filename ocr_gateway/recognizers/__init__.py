"""
OCR провайдеры.

Модули:
    - base: интерфейс Recognizer и типы результата
    - tesseract: локальный Tesseract
    - yandex: Yandex Vision OCR (с rate limiter)
    - google_vision: Google Cloud Vision
    - gemini: Gemini LLM
"""

import logging

from ocr_gateway.config import Settings
from ocr_gateway.recognizers.base import (
    RawText,
    RecognitionError,
    RecognitionPayload,
    Recognizer,
    StructuredJSON,
    to_json_fragment,
)

logger = logging.getLogger(__name__)

PROVIDERS = ("tesseract", "yandex", "google", "gemini")


def build_recognizer(provider: str, settings: Settings) -> Recognizer:
    """
    Создаёт провайдера OCR по имени.

    Модули облачных провайдеров импортируются только при выборе,
    чтобы их зависимости не загружались без необходимости.

    Args:
        provider: "tesseract", "yandex", "google" или "gemini"
        settings: настройки сервиса

    Returns:
        Recognizer: готовый к работе провайдер

    Raises:
        ValueError: неизвестный провайдер
    """
    provider = provider.lower()

    if provider == "tesseract":
        from ocr_gateway.recognizers.tesseract import TesseractRecognizer

        logger.info(f"Провайдер Tesseract, языки: {settings.languages}")
        return TesseractRecognizer(
            languages=settings.languages,
            oem=settings.tesseract_oem,
            psm=settings.tesseract_psm,
        )

    if provider == "yandex":
        from ocr_gateway.recognizers.yandex import YandexRecognizer
        from ocr_gateway.services.rate_limiter import TokenBucketRateLimiter

        logger.info(
            f"Провайдер Yandex OCR, модель: {settings.yandex_model}, "
            f"квота: {settings.yandex_requests_per_second} req/s"
        )
        return YandexRecognizer(
            api_key=settings.yandex_api_key,
            folder_id=settings.yandex_folder_id,
            model=settings.yandex_model,
            rate_limiter=TokenBucketRateLimiter(settings.yandex_requests_per_second),
            language_codes=settings.yandex_language_codes,
            acquire_timeout=settings.yandex_acquire_timeout_seconds,
            http_timeout=settings.yandex_http_timeout_seconds,
        )

    if provider == "google":
        from ocr_gateway.recognizers.google_vision import GoogleVisionRecognizer

        logger.info("Провайдер Google Vision")
        return GoogleVisionRecognizer(credentials_path=settings.google_credentials_path)

    if provider == "gemini":
        from ocr_gateway.recognizers.gemini import GeminiRecognizer

        logger.info(f"Провайдер Gemini, модель: {settings.gemini_model}")
        return GeminiRecognizer(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            http_timeout=settings.gemini_http_timeout_seconds,
        )

    raise ValueError(
        f"Неизвестный провайдер OCR: {provider}, доступны: {', '.join(PROVIDERS)}"
    )


__all__ = [
    "PROVIDERS",
    "build_recognizer",
    "RawText",
    "RecognitionError",
    "RecognitionPayload",
    "Recognizer",
    "StructuredJSON",
    "to_json_fragment",
]
