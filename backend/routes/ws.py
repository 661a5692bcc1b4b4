import json
import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError as PayloadError
from sqlmodel import Session

from core.database import get_session_factory
from schemas.notifications import NotificationCreate
from services import notifications as notification_service
from services.realtime import ConnectionRegistry, get_connection_registry
from utils.security import API_KEY_ADMIN, CurrentUser, is_admin_api_key, user_from_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])


def _authenticate(websocket: WebSocket, sessions: Callable[[], Session]) -> Optional[CurrentUser]:
    api_key = websocket.headers.get("x-admin-api-key") or websocket.query_params.get("api_key")
    if is_admin_api_key(api_key):
        return API_KEY_ADMIN

    token = websocket.query_params.get("token")
    if not token:
        return None
    with sessions() as session:
        try:
            user = user_from_token(token, session)
        except HTTPException as exc:
            logger.info("Rejected websocket token: %s", exc.detail)
            return None
        return CurrentUser(id=user.id, email=user.email, role=user.role)


@router.websocket("/ws/notifications")
async def notifications_socket(
    websocket: WebSocket,
    sessions: Callable[[], Session] = Depends(get_session_factory),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    # sessions are opened per message, never held across the idle socket
    principal = await run_in_threadpool(_authenticate, websocket, sessions)
    if principal is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    registry.register_connection(principal.id, websocket, is_admin=principal.is_admin)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
                event = message.get("event")
                data = message.get("data") or {}
            except (ValueError, AttributeError):
                await websocket.send_json({"event": "error", "data": {"error": "Messages must be JSON objects"}})
                continue

            if event == "register":
                registry.register_connection(principal.id, websocket, is_admin=principal.is_admin)
                await websocket.send_json(
                    {
                        "event": "registration-success",
                        "data": {
                            "message": "Successfully registered for notifications",
                            "user_id": principal.id,
                            "is_admin": principal.is_admin,
                        },
                    }
                )
            elif event == "send-notification":
                await _send_notification(websocket, sessions, registry, principal, data)
            else:
                await websocket.send_json({"event": "error", "data": {"error": f"Unknown event: {event}"}})
    except WebSocketDisconnect:
        logger.info("Websocket for %s disconnected", principal.email)
    finally:
        registry.remove_connection(websocket)


async def _send_notification(
    websocket: WebSocket,
    sessions: Callable[[], Session],
    registry: ConnectionRegistry,
    principal: CurrentUser,
    data: dict,
) -> None:
    if not principal.is_admin:
        await websocket.send_json({"event": "notification-error", "data": {"error": "Only admins can send notifications"}})
        return

    try:
        payload = NotificationCreate.model_validate(data)
        with sessions() as session:
            result = await notification_service.dispatch_notification(
                session, registry, payload, created_by=principal.id, sender=websocket
            )
    except PayloadError as exc:
        await websocket.send_json({"event": "notification-error", "data": {"error": str(exc)}})
        return
    except HTTPException as exc:
        await websocket.send_json({"event": "notification-error", "data": {"error": exc.detail}})
        return

    await websocket.send_json({"event": "notification-sent", "data": jsonable_encoder({"success": True, **result})})
