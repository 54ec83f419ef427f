# src/services/relay/app.py
"""
FastAPI приложение relay-сервера между Telegram Mini App и ботом.

REST endpoints:
- GET /health, GET /miniapp-url
- POST /webapp-data — данные из Mini App
- /api/data, /api/stats, /api/data/{category} — категории
- /api/users/... — присутствие и срезы пользователей
- GET /poll — очередь ожидания

Realtime:
- WS /ws, GET /events, GET /events/{user_id}
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.common.constants import TypeMsg
from src.common.exceptions import RelayError
from src.common.logger import log_error, log_info, setup_logging
from src.config import get_settings
from src.config.loader import Settings
from src.services.realtime_ws.routes import router as realtime_router
from src.services.relay.dependencies import build_maintainer, build_relay_service
from src.services.relay.routes import router as relay_router
from src.services.relay.service import RelayService
from src.shared.models.common import ErrorResponse
from src.worker.maintenance import CacheMaintainer


def create_app(
    service: RelayService | None = None,
    *,
    settings: Settings | None = None,
    maintenance: bool | None = None,
) -> FastAPI:
    """
    Создаёт приложение.

    Args:
        service: Готовый сервис (в тестах); иначе собирается из настроек при старте
        settings: Настройки; по умолчанию get_settings()
        maintenance: Запускать ли фоновое обслуживание; по умолчанию из конфига
    """
    settings = settings or get_settings()
    run_maintenance = settings.cache.MAINTENANCE_ENABLED if maintenance is None else maintenance

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Жизненный цикл приложения."""
        # Startup
        setup_logging()
        relay_service = service or build_relay_service(settings)
        app.state.relay_service = relay_service

        await relay_service.resolve_bot_username()
        await log_info(
            f"Relay запущен на {settings.deployment.RELAY_HOST}:{settings.deployment.RELAY_PORT}, "
            f"Mini App URL: {relay_service.miniapp_url()['url']}",
            type_msg=TypeMsg.INFO,
        )

        maintainer: CacheMaintainer | None = None
        if run_maintenance:
            maintainer = build_maintainer(settings, relay_service)
            await maintainer.start()

        yield

        # Shutdown
        await log_info("Остановка relay...", type_msg=TypeMsg.INFO)
        if maintainer is not None:
            await maintainer.stop()
        await relay_service.close()

    app = FastAPI(
        title="Mini App Relay",
        description="In-memory relay между Telegram Mini App и ботом: приём данных, опрос, SSE и WebSocket.",
        version=settings.system.VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    if service is not None:
        app.state.relay_service = service

    # CORS для Mini App
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Telegram Mini App загружается с разных доменов
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)

    app.include_router(relay_router)
    app.include_router(realtime_router)
    return app


def _register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        await log_info(f"[Relay] {request.url.path}: {exc.message}", type_msg=TypeMsg.WARNING)
        body = ErrorResponse(error_code=exc.error_code, message=exc.message, details=exc.details)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        body = ErrorResponse(
            error_code="bad_request",
            message="Некорректный запрос",
            details={"errors": jsonable_errors(exc)},
        )
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        await log_error(f"Необработанная ошибка {request.method} {request.url.path}: {exc!r}", exc_info=True)
        body = ErrorResponse(error_code="internal_error", message="Internal Server Error")
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump())


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Ошибки валидации без несериализуемых полей (ctx, input)."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "src.services.relay.app:app",
        host=_settings.deployment.RELAY_HOST,
        port=_settings.deployment.RELAY_PORT,
        reload=_settings.system.RUN_DEV_MODE,
    )
