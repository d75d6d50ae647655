"""
OCR Gateway — FastAPI приложение.

Эндпоинты:
    POST   /api/v1/ocr              — батч изображений через провайдер по умолчанию
    POST   /api/v1/ocr/{provider}   — батч через конкретный провайдер
    GET    /api/v1/history          — история клиента (X-Client-ID)
    POST   /api/v1/history          — добавить запись в историю
    DELETE /api/v1/history/{id}     — удалить запись
    DELETE /api/v1/history          — очистить историю
    GET    /health, /ready          — проверки работоспособности

Запуск:
    uvicorn ocr_gateway.main:app --host 0.0.0.0 --port 8080
"""

import json
import logging
import os
import threading
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from ocr_gateway.config import Settings, settings
from ocr_gateway.recognizers import Recognizer, build_recognizer
from ocr_gateway.schemas import (
    AddHistoryRequest,
    BatchResult,
    ErrorResponse,
    HistoryEntry,
    HistoryEntryModel,
    ImageTask,
    OCRResponse,
    OCRResult,
)
from ocr_gateway.services.batch_processor import BatchProcessor
from ocr_gateway.services.history_store import HistoryStore
from ocr_gateway.services.worker_pool import WorkerPool

# Настройка логгера
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [OCR-Gateway] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


class UnicodeJSONResponse(JSONResponse):
    """JSON ответ с нормальным отображением кириллицы (без \\uXXXX экранирования)."""

    def render(self, content) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


class Gateway:
    """
    Состояние приложения на время его жизни.

    Attributes:
        settings: настройки сервиса
        recognizers: провайдеры OCR по имени
        worker_pool: общий пул слотов (при worker_pool_scope="process")
        history: хранилище истории клиентов
    """

    def __init__(self, app_settings: Settings, recognizers: dict[str, Recognizer]):
        self.settings = app_settings
        self.recognizers = recognizers
        self.worker_pool = WorkerPool(app_settings.max_workers)
        self.history = HistoryStore(
            ttl=timedelta(minutes=app_settings.history_ttl_minutes),
            cleanup_interval=app_settings.history_cleanup_interval_seconds,
        )

    def processor(self, provider: str) -> BatchProcessor:
        """Батч-процессор для провайдера с пулом слотов согласно настройкам."""
        if self.settings.worker_pool_scope == "request":
            pool = WorkerPool(self.settings.max_workers)
        else:
            pool = self.worker_pool

        return BatchProcessor(
            self.recognizers[provider],
            pool,
            batch_timeout=self.settings.batch_timeout_seconds,
        )

    def close(self) -> None:
        for name, recognizer in self.recognizers.items():
            try:
                recognizer.close()
            except Exception as e:
                logger.error(f"Ошибка остановки провайдера {name}: {e}")
        self.history.stop()


def create_app(
    app_settings: Optional[Settings] = None,
    recognizers: Optional[dict[str, Recognizer]] = None,
) -> FastAPI:
    """
    Создаёт FastAPI приложение.

    Args:
        app_settings: настройки (по умолчанию глобальные из .env)
        recognizers: готовые провайдеры по имени; если не заданы,
            создаются при старте для settings.active_providers

    Returns:
        FastAPI: приложение
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        providers = recognizers
        if providers is None:
            providers = {
                name: build_recognizer(name, app_settings)
                for name in app_settings.active_providers
            }

        gateway = Gateway(app_settings, providers)
        app.state.gateway = gateway

        logger.info(
            f"OCR Gateway запущен: провайдеры {list(providers)}, "
            f"по умолчанию {app_settings.provider}, "
            f"воркеров: {app_settings.max_workers} ({app_settings.worker_pool_scope})"
        )
        try:
            yield
        finally:
            gateway.close()
            logger.info("OCR Gateway остановлен")

    app = FastAPI(
        title="OCR Gateway",
        description="Пакетное распознавание изображений через OCR провайдеров",
        version="1.0.0",
        default_response_class=UnicodeJSONResponse,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)

    app.state.settings = app_settings
    app.state.request_slots = threading.BoundedSemaphore(app_settings.max_concurrent_users)

    app.include_router(service_router)
    app.include_router(api_router)

    return app


# =============================================================================
# Зависимости и обработчики ошибок
# =============================================================================


def limit_concurrent_requests(request: Request):
    """
    Ограничивает число одновременных запросов к /api/v1.

    Не ждёт освобождения: при заполненном лимите сразу 429.
    """
    slots: threading.BoundedSemaphore = request.app.state.request_slots
    if not slots.acquire(blocking=False):
        raise HTTPException(
            status_code=429,
            detail={
                "error": "too many concurrent requests",
                "message": "server is busy, please try again later",
            },
        )
    try:
        yield
    finally:
        slots.release()


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def get_client_id(
    x_client_id: Optional[str] = Header(default=None, alias="X-Client-ID"),
) -> str:
    if not x_client_id:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "validation_error",
                "message": "X-Client-ID header is required",
            },
        )
    return x_client_id


async def _http_exception_handler(request: Request, exc: HTTPException):
    """Отдаёт detail вида {"error", "message"} без обёртки {"detail": ...}."""
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = ErrorResponse(error="http_error", message=str(exc.detail)).model_dump()
    return UnicodeJSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Некорректный запрос {request.url.path}: {exc.errors()}")
    return UnicodeJSONResponse(
        status_code=400,
        content={"error": "validation_error", "message": "invalid request body"},
    )


# =============================================================================
# Служебные эндпоинты
# =============================================================================

service_router = APIRouter()


@service_router.get("/health")
async def health_check(gateway: Gateway = Depends(get_gateway)) -> dict:
    """
    Проверка работоспособности сервиса.

    Returns:
        dict: статус, провайдеры и текущая конфигурация
    """
    app_settings = gateway.settings
    return {
        "status": "OK",
        "service": "ocr-gateway",
        "version": "1.0.0",
        "providers": list(gateway.recognizers),
        "default_provider": app_settings.provider,
        "config": {
            "max_workers": app_settings.max_workers,
            "worker_pool_scope": app_settings.worker_pool_scope,
            "max_images_per_request": app_settings.max_images_per_request,
            "max_image_size_mb": app_settings.max_image_size_mb,
            "supported_formats": app_settings.supported_formats,
            "batch_timeout_seconds": app_settings.batch_timeout_seconds,
        },
        "history": gateway.history.stats(),
    }


@service_router.get("/ready")
async def readiness_check() -> dict:
    return {"ready": True}


# =============================================================================
# API v1
# =============================================================================

api_router = APIRouter(
    prefix="/api/v1",
    dependencies=[Depends(limit_concurrent_requests)],
)


@api_router.post(
    "/ocr",
    response_model=OCRResponse,
)
async def recognize_default(
    images: Optional[list[UploadFile]] = File(
        default=None,
        description="Изображения для распознавания (поле images)",
    ),
    gateway: Gateway = Depends(get_gateway),
) -> OCRResponse:
    """
    Распознаёт батч изображений через провайдер по умолчанию.

    Args:
        images: изображения (multipart/form-data, поле images)

    Returns:
        OCRResponse: результаты в порядке загрузки и счётчики
    """
    return await _process_batch(gateway, gateway.settings.provider.lower(), images)


@api_router.post(
    "/ocr/{provider}",
    response_model=OCRResponse,
)
async def recognize_with_provider(
    provider: str,
    images: Optional[list[UploadFile]] = File(
        default=None,
        description="Изображения для распознавания (поле images)",
    ),
    x_gemini_api_key: Optional[str] = Header(default=None, alias="X-Gemini-API-Key"),
    gateway: Gateway = Depends(get_gateway),
) -> OCRResponse:
    """
    Распознаёт батч изображений через указанный провайдер.

    Провайдер должен быть включён в настройках (provider или
    enabled_providers). Для gemini при заданном OCR_GEMINI_AUTH_KEY
    требуется заголовок X-Gemini-API-Key с тем же значением.

    Raises:
        HTTPException: 404 для неизвестного провайдера, 401 при неверном ключе
    """
    provider = provider.lower()
    if provider not in gateway.recognizers:
        raise HTTPException(
            status_code=404,
            detail={
                "error": "unknown_provider",
                "message": f"provider {provider} is not enabled",
            },
        )

    auth_key = gateway.settings.gemini_auth_key
    if provider == "gemini" and auth_key and x_gemini_api_key != auth_key:
        logger.warning("Запрос к Gemini без корректного ключа")
        raise HTTPException(
            status_code=401,
            detail={
                "error": "authentication_error",
                "message": "Invalid or missing authentication key",
            },
        )

    return await _process_batch(gateway, provider, images)


@api_router.get("/history")
async def get_history(
    client_id: str = Depends(get_client_id),
    gateway: Gateway = Depends(get_gateway),
) -> dict:
    """История клиента, новые записи первыми."""
    entries = gateway.history.get(client_id)
    return {"entries": [_entry_to_model(entry) for entry in entries]}


@api_router.post("/history")
async def add_history(
    body: AddHistoryRequest,
    client_id: str = Depends(get_client_id),
    gateway: Gateway = Depends(get_gateway),
) -> dict:
    """
    Добавляет запись в историю клиента.

    Returns:
        dict: {"entry": созданная запись}
    """
    entry = HistoryEntry(
        id=str(time.time_ns()),
        image_base64=body.image_base64,
        ocr_result=body.ocr_result,
        created_at=datetime.now(timezone.utc),
    )
    gateway.history.add(client_id, entry)

    return {"entry": _entry_to_model(entry)}


@api_router.delete("/history/{entry_id}")
async def delete_history_entry(
    entry_id: str,
    client_id: str = Depends(get_client_id),
    gateway: Gateway = Depends(get_gateway),
) -> dict:
    return {"deleted": gateway.history.delete(client_id, entry_id)}


@api_router.delete("/history")
async def clear_history(
    client_id: str = Depends(get_client_id),
    gateway: Gateway = Depends(get_gateway),
) -> dict:
    gateway.history.clear(client_id)
    return {"cleared": True}


# =============================================================================
# Вспомогательные функции
# =============================================================================


async def _process_batch(
    gateway: Gateway,
    provider: str,
    images: Optional[list[UploadFile]],
) -> OCRResponse:
    """
    Проверяет батч и запускает обработку в threadpool.

    Raises:
        HTTPException: 400 при пустом или слишком большом батче,
            500 при внутренней ошибке обработки
    """
    app_settings = gateway.settings
    images = images or []

    if not images:
        raise HTTPException(
            status_code=400,
            detail={"error": "validation_error", "message": "no images provided"},
        )

    if len(images) > app_settings.max_images_per_request:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "validation_error",
                "message": f"maximum {app_settings.max_images_per_request} "
                f"images allowed, got {len(images)}",
            },
        )

    tasks = [
        ImageTask(
            filename=upload.filename or f"image_{index + 1}",
            size_bytes=_upload_size(upload),
            content=upload.file,
        )
        for index, upload in enumerate(images)
    ]
    logger.info(f"Получен батч: {len(tasks)} изображений, провайдер: {provider}")

    processor = gateway.processor(provider)

    # Обработка блокирующая (потоки + сетевые вызовы) — в threadpool,
    # чтобы не блокировать event loop
    try:
        result = await run_in_threadpool(
            processor.process_images,
            tasks,
            app_settings.max_image_size_bytes,
            app_settings.supported_formats,
        )
    except Exception as e:
        logger.exception(f"Ошибка обработки батча: {e}")
        raise HTTPException(
            status_code=500,
            detail={
                "error": "internal_server_error",
                "message": "failed to process images",
            },
        )

    return _batch_to_response(result)


def _upload_size(upload: UploadFile) -> int:
    """Размер загруженного файла, без чтения содержимого в память."""
    if upload.size is not None:
        return upload.size

    upload.file.seek(0, os.SEEK_END)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


def _batch_to_response(result: BatchResult) -> OCRResponse:
    """Преобразует BatchResult в ответ API (JSON фрагменты → объекты)."""
    return OCRResponse(
        results=[
            OCRResult(
                filename=outcome.filename,
                text=json.loads(outcome.text),
                error=outcome.error or None,
            )
            for outcome in result.results
        ],
        total_images=result.total_images,
        successful=result.successful,
        failed=result.failed,
        processed_at=result.processed_at,
    )


def _entry_to_model(entry: HistoryEntry) -> HistoryEntryModel:
    return HistoryEntryModel(
        id=entry.id,
        image_base64=entry.image_base64,
        ocr_result=entry.ocr_result,
        created_at=entry.created_at,
    )


# FastAPI приложение
app = create_app()


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Запуск OCR Gateway на {settings.host}:{settings.port}")
    logger.info(f"CPU ядер: {os.cpu_count()}")

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
    )
