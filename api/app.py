from __future__ import annotations

import logging
import os
import secrets
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from timebox import (
    ACTION_PROMOTE,
    ACTION_RETIRE,
    ActivityNotFound,
    FocusService,
    InvalidTransition,
    NotificationPayload,
    VALID_STATUSES,
)

logger = logging.getLogger(__name__)


def create_app(service: FocusService | None = None) -> FastAPI:
    """Build the control API around *service* (a default one if omitted).

    The service is started and stopped with the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        svc = service or FocusService()
        app.state.service = svc
        await svc.start()
        try:
            yield
        finally:
            await svc.stop()

    app = FastAPI(title="Timebox", version="0.1.0", lifespan=lifespan)
    app.include_router(router)
    return app


# ── Auth ──────────────────────────────────────────────────────

security = HTTPBasic(auto_error=False)


def get_current_user(credentials: HTTPBasicCredentials | None = Depends(security)) -> str:
    expected_username = os.environ.get("TIMEBOX_USERNAME", "")
    expected_password = os.environ.get("TIMEBOX_PASSWORD", "")

    if not expected_username or not expected_password:
        return "guest"

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Basic"},
        )

    correct_username = secrets.compare_digest(credentials.username.encode("utf-8"), expected_username.encode("utf-8"))
    correct_password = secrets.compare_digest(credentials.password.encode("utf-8"), expected_password.encode("utf-8"))

    if not (correct_username and correct_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username


def get_service(request: Request) -> FocusService:
    return request.app.state.service


# ── Endpoints ─────────────────────────────────────────────────

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"ok": "true"}


@router.get("/api/activities")
async def api_list_activities(
    status_filter: str | None = Query(default=None, alias="status"),
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    """List activities ordered by planned start, optionally by status."""
    if status_filter and status_filter not in VALID_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status_filter}")
    items = await service.list_activities(status_filter)
    return {"activities": [a.to_dict() for a in items]}


@router.post("/api/activities")
async def api_create_activity(
    payload: dict[str, Any] = Body(...),
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    """Schedule a new activity."""
    activity, errors = await service.create_activity(payload)
    if errors:
        raise HTTPException(status_code=400, detail="; ".join(errors))
    return {"ok": True, "activity": activity.to_dict()}


@router.put("/api/activities/{activity_id}")
async def api_reschedule_activity(
    activity_id: str,
    payload: dict[str, Any] = Body(...),
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    """Edit a scheduled activity."""
    activity, errors = await service.reschedule_activity(activity_id, payload)
    if activity is None:
        detail = "; ".join(errors)
        code = 404 if detail.startswith("Activity not found") else 400
        raise HTTPException(status_code=code, detail=detail)
    return {"ok": True, "activity": activity.to_dict()}


@router.delete("/api/activities/{activity_id}")
async def api_delete_activity(
    activity_id: str,
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    try:
        deleted = await service.delete_activity(activity_id)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Activity not found: {activity_id}")
    return {"ok": True, "activity_id": activity_id}


@router.post("/api/activities/{activity_id}/cancel")
async def api_cancel_activity(
    activity_id: str,
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    try:
        activity = await service.cancel_activity(activity_id)
    except ActivityNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"ok": True, "activity": activity.to_dict()}


# ── Session ───────────────────────────────────────────────────


@router.get("/api/session")
async def api_session(
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    """Current timer state plus what the monitor is tracking."""
    return service.status()


@router.post("/api/session/start")
async def api_session_start(
    payload: dict[str, Any] = Body(...),
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    activity_id = str(payload.get("activity_id", payload.get("activityId", "")))
    if not activity_id:
        raise HTTPException(status_code=400, detail="Missing required field: activity_id")
    reset = bool(payload.get("reset_progress", payload.get("resetProgress", False)))
    try:
        await service.start_activity(activity_id, reset_progress=reset)
    except ActivityNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"ok": True, "session": service.timer.status()}


def _session_changed(service: FocusService, action: Callable[[], None]) -> dict[str, Any]:
    try:
        action()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"ok": True, "session": service.timer.status()}


@router.post("/api/session/pause")
async def api_session_pause(
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    return _session_changed(service, service.pause)


@router.post("/api/session/resume")
async def api_session_resume(
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    return _session_changed(service, service.resume)


@router.post("/api/session/complete")
async def api_session_complete(
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    return _session_changed(service, service.complete)


@router.post("/api/session/stop")
async def api_session_stop(
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    """Abort the running session; the activity goes back to scheduled."""
    return _session_changed(service, service.stop_session)


# ── Platform callbacks ────────────────────────────────────────


@router.post("/api/lifecycle/foreground")
async def api_foreground(
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    await service.enter_foreground()
    return {"ok": True, "foreground": service.foreground}


@router.post("/api/lifecycle/background")
async def api_background(
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    await service.enter_background()
    return {"ok": True, "foreground": service.foreground}


@router.post("/api/notifications")
async def api_notification(
    payload: dict[str, Any] = Body(...),
    username: str = Depends(get_current_user),
    service: FocusService = Depends(get_service),
) -> dict[str, Any]:
    """A scheduled wake-up was delivered by the platform."""
    notification = NotificationPayload.from_dict(payload)
    if not notification.activity_id or notification.action not in (ACTION_PROMOTE, ACTION_RETIRE):
        raise HTTPException(status_code=400, detail="Notification needs activityId and a promote or retire action")
    handled = await service.handle_notification(notification)
    return {"ok": True, "handled": handled}


app = create_app()
