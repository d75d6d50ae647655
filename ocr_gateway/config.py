"""
Конфигурация OCR Gateway.

Все значения читаются из .env файла (или переменных окружения).
Единый префикс: OCR_

Документация по параметрам: .env.example
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Настройки OCR Gateway.

    Читает переменные с префиксом OCR_ из .env файла.
    Списки задаются в JSON формате: OCR_SUPPORTED_FORMATS='["jpg", "png"]'
    """

    model_config = SettingsConfigDict(
        env_prefix="OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Сервер ---
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]

    # --- Провайдер OCR ---
    # "tesseract", "yandex", "google" или "gemini"
    provider: str = "tesseract"
    # Дополнительные провайдеры, доступные через /api/v1/ocr/{provider}
    enabled_providers: list[str] = []

    # --- Параллелизм ---
    max_workers: int = Field(default=4, gt=0)
    # "process" — один пул на процесс, "request" — свой пул на каждый батч
    worker_pool_scope: Literal["process", "request"] = "process"
    # 0 — без ограничения времени на батч
    batch_timeout_seconds: float = Field(default=0.0, ge=0)
    # Одновременные запросы к /api/v1, сверх лимита — 429
    max_concurrent_users: int = Field(default=100, gt=0)

    # --- Лимиты батча ---
    max_images_per_request: int = Field(default=10, gt=0)
    max_image_size_mb: int = Field(default=10, gt=0)
    supported_formats: list[str] = ["jpg", "jpeg", "png", "webp"]

    # --- Tesseract ---
    languages: list[str] = ["rus", "eng"]
    tesseract_oem: int = 3
    tesseract_psm: int = 3

    # --- Yandex Vision OCR ---
    yandex_api_key: str = ""
    yandex_folder_id: str = ""
    # "page" или "handwritten"
    yandex_model: str = "page"
    yandex_language_codes: list[str] = ["ru", "en"]
    # Квота Yandex API: запросов в секунду
    yandex_requests_per_second: int = 10
    yandex_acquire_timeout_seconds: float = Field(default=120.0, ge=0)
    yandex_http_timeout_seconds: float = 240.0

    # --- Google Vision ---
    google_credentials_path: str = ""

    # --- Gemini ---
    gemini_api_key: str = ""
    gemini_model: str = "gemini-3-pro-preview"
    # Ключ клиента для /api/v1/ocr/gemini (заголовок X-Gemini-API-Key)
    gemini_auth_key: str = ""
    gemini_http_timeout_seconds: float = 240.0

    # --- История ---
    history_ttl_minutes: int = Field(default=60, gt=0)
    history_cleanup_interval_seconds: float = Field(default=600.0, gt=0)

    @property
    def max_image_size_bytes(self) -> int:
        return self.max_image_size_mb * 1024 * 1024

    @property
    def active_providers(self) -> list[str]:
        """Провайдер по умолчанию + дополнительные, без повторов."""
        providers = [self.provider.lower()]
        for name in self.enabled_providers:
            name = name.lower()
            if name not in providers:
                providers.append(name)
        return providers


# Глобальный экземпляр настроек
settings = Settings()
