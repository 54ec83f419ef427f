# src/services/relay/routes.py
"""
HTTP endpoints relay-сервиса.
Только маршрутизация: вся логика в RelayService.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.config.loader import Settings
from src.services.relay.dependencies import get_relay_service, get_settings_dep
from src.services.relay.service import RelayService
from src.shared.models.common import HealthStatus


# === REQUEST MODELS ===

class WebAppDataRequest(BaseModel):
    """Тело запроса от Mini App: { initData, payload, queryId }."""
    initData: str | None = None
    payload: dict[str, Any] | None = None
    queryId: str | None = None


class RegisterRequest(BaseModel):
    """Профиль пользователя при регистрации (необязателен)."""
    profile: dict[str, Any] = Field(default_factory=dict)


router = APIRouter()


# === HEALTH ===

@router.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check(
    service: RelayService = Depends(get_relay_service),
    settings: Settings = Depends(get_settings_dep),
) -> HealthStatus:
    """Проверка здоровья сервиса."""
    return HealthStatus(
        service=settings.system.PROJECT_NAME,
        status="healthy",
        version=settings.system.VERSION,
        dependencies={
            "telegram": "configured" if settings.telegram.BOT_TOKEN else "not_configured",
        },
    )


@router.get("/miniapp-url", tags=["Health"])
async def miniapp_url(service: RelayService = Depends(get_relay_service)) -> dict[str, str]:
    """Вычисленный URL Mini App."""
    return service.miniapp_url()


# === MINI APP ===

@router.post("/webapp-data", tags=["WebApp"])
async def webapp_data(
    request: WebAppDataRequest,
    service: RelayService = Depends(get_relay_service),
) -> JSONResponse:
    """
    Приём данных из Mini App.

    Данные сохраняются в любом случае. Если ответ через Bot API не
    доставлен, возвращается 502 с причиной.
    """
    result = await service.ingest_webapp_event(request.payload, request.queryId, request.initData)
    status_code = status.HTTP_200_OK if result.notify.delivered else status.HTTP_502_BAD_GATEWAY
    return JSONResponse(status_code=status_code, content=result.to_dict())


# === DATA ===

@router.get("/api/data", tags=["Data"])
async def get_all_data(service: RelayService = Depends(get_relay_service)) -> dict[str, Any]:
    """Полный дамп состояния."""
    return service.get_all()


@router.get("/api/stats", tags=["Data"])
async def get_stats(service: RelayService = Depends(get_relay_service)) -> dict[str, Any]:
    """Количество записей по категориям и статистика каналов."""
    return service.get_stats()


@router.get("/api/data/{category}", tags=["Data"])
async def get_category(category: str, service: RelayService = Depends(get_relay_service)) -> dict[str, Any]:
    return service.get_category(category).model_dump(mode="json")


@router.post("/api/data/{category}", tags=["Data"])
async def ingest_category(
    category: str,
    body: Any = Body(default=None),
    service: RelayService = Depends(get_relay_service),
) -> dict[str, Any]:
    """Запись от бота: объект, список или {"records": [...]}."""
    report = await service.ingest_bot_records(category, body)
    return {"ok": True, **report.to_dict()}


@router.delete("/api/data/{category}", tags=["Data"])
async def clear_category(category: str, service: RelayService = Depends(get_relay_service)) -> dict[str, Any]:
    return {"ok": True, "cleared": await service.clear(category)}


@router.delete("/api/data", tags=["Data"])
async def clear_all(service: RelayService = Depends(get_relay_service)) -> dict[str, Any]:
    return {"ok": True, "cleared": await service.clear()}


# === USERS ===

@router.post("/api/users/{user_id}/register", tags=["Users"])
async def register_user(
    user_id: str,
    request: RegisterRequest | None = None,
    service: RelayService = Depends(get_relay_service),
) -> dict[str, Any]:
    entry = service.register_user(user_id, request.profile if request else None)
    return {"ok": True, "user": entry.to_dict()}


@router.post("/api/users/{user_id}/heartbeat", tags=["Users"])
async def heartbeat(user_id: str, service: RelayService = Depends(get_relay_service)) -> dict[str, Any]:
    """Обновление активности; для незарегистрированного пользователя ничего не делает."""
    return {"ok": True, "registered": service.heartbeat(user_id)}


@router.get("/api/users/active", tags=["Users"])
async def active_users(
    include_inactive: bool = Query(default=False),
    service: RelayService = Depends(get_relay_service),
) -> dict[str, Any]:
    users = [entry.to_dict() for entry in service.active_users(only_active=not include_inactive)]
    return {"users": users, "count": len(users)}


@router.post("/api/users/{user_id}/snapshot", tags=["Users"])
async def ingest_snapshot(
    user_id: str,
    snapshot: dict[str, Any] = Body(...),
    service: RelayService = Depends(get_relay_service),
) -> dict[str, Any]:
    """Срез данных пользователя от бота; возвращает отправленные события."""
    events = await service.ingest_user_snapshot(user_id, snapshot)
    return {"ok": True, "events": [event.to_message() for event in events]}


@router.get("/api/users/{user_id}/snapshot", tags=["Users"])
async def get_snapshot(user_id: str, service: RelayService = Depends(get_relay_service)) -> dict[str, Any]:
    snapshot = service.get_user_snapshot(user_id)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Snapshot not found or stale")
    return {"user_id": user_id, "snapshot": snapshot.model_dump(mode="json")}


# === POLL ===

@router.get("/poll", tags=["Realtime"])
async def poll(
    user_id: str | None = Query(default=None),
    service: RelayService = Depends(get_relay_service),
) -> dict[str, Any]:
    """Забрать накопленные события пользователя."""
    items = service.poll(user_id)
    return {"ok": True, "items": items}
