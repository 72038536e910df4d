"""
Модуль server.py
HTTP-сервис обогащения на FastAPI.

Маршруты:
    POST /api/enrich     - один подписанный вызов конвейера обогащения
    GET  /api/bookmarks  - текущий удаленный документ без кэширования
"""
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Config, ConfigManager
from .errors import ConfigurationMissing, RateLimited, SignatureError, SyncError
from .logger import get_logger, log_error_with_context
from .pipeline import EnrichmentPipeline
from .remote import GistClient
from .trigger import NONCE_HEADER, SIGNATURE_HEADER, TIMESTAMP_HEADER, NonceCache, verify_request

logger = get_logger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def rate_limit_response(e: RateLimited) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "RATE_LIMIT",
            "waitMinutes": e.wait_minutes,
            "message": str(e),
        },
    )


def create_app(
    config: Optional[Config] = None,
    pipeline_factory: Optional[Callable[[], EnrichmentPipeline]] = None,
    client_factory: Optional[Callable[[], GistClient]] = None,
) -> FastAPI:
    """
    Создает приложение сервиса.

    Аргументы:
        config: Объект конфигурации (по умолчанию загружается из .env)
        pipeline_factory: Фабрика конвейера обогащения на один запрос
        client_factory: Фабрика клиента хранилища для GET /api/bookmarks

    Возвращает:
        FastAPI: Приложение
    """
    config = config or ConfigManager().get()
    pipeline_factory = pipeline_factory or (lambda: EnrichmentPipeline(config))
    client_factory = client_factory or (lambda: GistClient(config))
    nonces = NonceCache(config.signature_max_age)

    app = FastAPI(title="Bookmark Sync Enrichment API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", SIGNATURE_HEADER, TIMESTAMP_HEADER, NONCE_HEADER],
        max_age=86400,
    )
    app.state.config = config
    app.state.nonces = nonces

    @app.post("/api/enrich")
    async def enrich(request: Request):
        if not config.api_secret:
            logger.error("API_SECRET не задан, обогащение недоступно")
            return JSONResponse(status_code=500, content={"success": False, "error": "API not configured"})

        body = await request.body()
        try:
            verify_request(body, request.headers, config.api_secret, config.signature_max_age, nonces=nonces)
        except SignatureError as e:
            logger.warning(f"Запрос обогащения отклонен: {e.reason}")
            return JSONResponse(status_code=401, content={"success": False, "error": e.reason})

        try:
            result = await pipeline_factory().run()
        except RateLimited as e:
            return rate_limit_response(e)
        except ConfigurationMissing as e:
            return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
        except SyncError as e:
            log_error_with_context(e, {"operation": "api_enrich"})
            return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

        return result.to_wire()

    @app.get("/api/bookmarks")
    async def bookmarks():
        try:
            async with client_factory() as client:
                if config.github_token and config.gist_handle:
                    document = await client.fetch(config.gist_handle)
                elif config.gist_raw_url:
                    document = await client.fetch_public(config.gist_raw_url)
                else:
                    raise ConfigurationMissing(["GIST_RAW_URL"])
        except RateLimited as e:
            return rate_limit_response(e)
        except SyncError as e:
            log_error_with_context(e, {"operation": "api_bookmarks"})
            return JSONResponse(status_code=500, content={"error": str(e)})

        if document is None:
            return JSONResponse(status_code=500, content={"error": f"{config.gist_filename} not found in gist"})
        return JSONResponse(content=document.to_wire(), headers=NO_CACHE_HEADERS)

    return app
