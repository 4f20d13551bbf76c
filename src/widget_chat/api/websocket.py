"""Channel token issuance and the real-time socket endpoint."""

import json
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from structlog import get_logger

from ..domain.errors import ValidationFailed
from ..domain.models import Credential, User, utcnow
from ..metrics import OPEN_CONNECTIONS, SUBSCRIPTIONS
from ..repositories.base import Repository
from ..services.authorizer import ChannelAuthorizer
from ..services.broadcaster import ChannelHub
from ..services.status import RealtimeStatusProbe
from .dependencies import (
    auth_token_rate_limit,
    get_authorizer,
    get_current_user,
    get_repository,
    get_status_probe,
    guest_token_rate_limit,
)
from .schemas import GuestTokenRequest, success

logger = get_logger()

router = APIRouter(tags=["realtime"])

UNAUTHORIZED_CLOSE_CODE = 4401


@router.get("/websocket/auth", dependencies=[Depends(auth_token_rate_limit)])
async def websocket_auth(
    user: User = Depends(get_current_user),
    authorizer: ChannelAuthorizer = Depends(get_authorizer),
):
    """Issue a connect token for the calling user, revoking earlier ones."""
    issued = await authorizer.issue_authenticated_token(user)
    return success(
        {
            "token": issued.token,
            "user_id": issued.user_id,
            "expires_at": issued.expires_at.isoformat(),
        }
    )


async def _check_guest_targets(body: GuestTokenRequest, repository: Repository) -> None:
    errors: Dict[str, list] = {}
    if body.session_id:
        try:
            session = await repository.get_session(UUID(body.session_id))
        except ValueError:
            session = None
        if session is None:
            errors["session_id"] = ["The selected session id is invalid."]
    if body.widget_id and await repository.get_widget(body.widget_id) is None:
        errors["widget_id"] = ["The selected widget id is invalid."]
    if errors:
        raise ValidationFailed("Validation failed", errors=errors)


@router.post("/websocket/guest-auth", dependencies=[Depends(guest_token_rate_limit)])
async def websocket_guest_auth(
    body: GuestTokenRequest,
    request: Request,
    authorizer: ChannelAuthorizer = Depends(get_authorizer),
    repository: Repository = Depends(get_repository),
):
    """Issue a short-lived guest token scoped to a session and/or widget."""
    await _check_guest_targets(body, repository)
    issued = await authorizer.issue_guest_token(
        body.client_id,
        session_id=body.session_id,
        widget_id=body.widget_id,
        ip=request.client.host if request.client else None,
    )
    return success(
        {
            "token": issued.token,
            "expires_at": issued.expires_at.isoformat(),
            "channels": issued.channels,
        }
    )


@router.get("/websocket-status")
async def websocket_status(probe: RealtimeStatusProbe = Depends(get_status_probe)):
    """Whether the real-time server is reachable; cached for a short while."""
    return success(await probe.status())


async def _reply(websocket: WebSocket, event_type: str, data: Dict[str, Any]) -> None:
    await websocket.send_json(
        {"type": event_type, "data": data, "timestamp": utcnow().isoformat()}
    )


async def _subscribe(
    websocket: WebSocket,
    hub: ChannelHub,
    authorizer: ChannelAuthorizer,
    token: str,
    channel: Optional[str],
) -> None:
    if not isinstance(channel, str) or not channel:
        await _reply(websocket, "subscription_error", {"channel": channel, "reason": "invalid_channel"})
        return

    # re-resolved so an expired or revoked token stops granting channels
    credential = await authorizer.resolve_credential(token)
    if credential is None:
        SUBSCRIPTIONS.labels(outcome="expired").inc()
        await _reply(websocket, "subscription_error", {"channel": channel, "reason": "token_expired"})
        return

    if not await authorizer.authorize_channel(channel, credential):
        SUBSCRIPTIONS.labels(outcome="denied").inc()
        logger.warning("channel_subscription_denied", channel=channel, kind=credential.kind.value)
        await _reply(websocket, "subscription_error", {"channel": channel, "reason": "forbidden"})
        return

    await hub.subscribe(websocket, channel)
    SUBSCRIPTIONS.labels(outcome="granted").inc()
    await _reply(websocket, "subscription_succeeded", {"channel": channel})


async def _handle(
    websocket: WebSocket,
    hub: ChannelHub,
    authorizer: ChannelAuthorizer,
    token: str,
    raw: str,
) -> None:
    try:
        message = json.loads(raw)
    except ValueError:
        await _reply(websocket, "error", {"message": "Malformed message"})
        return
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        await _reply(websocket, "error", {"message": "Malformed message"})
        return

    event_type = message["type"]
    data = message.get("data") if isinstance(message.get("data"), dict) else {}

    if event_type == "ping":
        await _reply(websocket, "pong", {})
    elif event_type == "subscribe":
        await _subscribe(websocket, hub, authorizer, token, data.get("channel"))
    elif event_type == "unsubscribe":
        channel = data.get("channel")
        if isinstance(channel, str):
            await hub.unsubscribe(websocket, channel)
        await _reply(websocket, "unsubscribed", {"channel": channel})
    else:
        await _reply(websocket, "error", {"message": f"Unknown message type: {event_type}"})


def _describe(credential: Credential) -> Dict[str, Any]:
    return {
        "kind": credential.kind.value,
        "user_id": credential.user_id,
        "channels": credential.channels,
        "expires_at": credential.expires_at.isoformat(),
    }


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None):
    """Token-authenticated transport carrying subscriptions and broadcasts."""
    authorizer: ChannelAuthorizer = websocket.app.state.authorizer
    hub: ChannelHub = websocket.app.state.hub

    credential = await authorizer.resolve_credential(token)
    if credential is None:
        logger.warning("websocket_rejected")
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE)
        return

    await websocket.accept()
    await hub.register(websocket)
    OPEN_CONNECTIONS.inc()
    logger.info("websocket_connected", kind=credential.kind.value, user_id=credential.user_id)

    try:
        await _reply(websocket, "connection_established", _describe(credential))
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("websocket_disconnected", code=message.get("code"))
                break
            raw = message.get("text")
            if raw is None:
                await _reply(websocket, "error", {"message": "Binary frames are not supported"})
                continue
            await _handle(websocket, hub, authorizer, token, raw)
    except WebSocketDisconnect as e:
        logger.info("websocket_disconnected", code=e.code)
    finally:
        await hub.unregister(websocket)
        OPEN_CONNECTIONS.dec()
