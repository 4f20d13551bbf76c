"""Public widget endpoints used by anonymous embeds."""

from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from structlog import get_logger

from ..domain.errors import RequestTimeout
from ..services.chat import ChatService
from ..services.gatekeeper import host_from_url, is_allowed
from .dependencies import get_chat_service, get_origin_host, get_request_queue
from .request_queue import SessionQueue
from .schemas import DomainCheck, MessageCreate, TypingUpdate, success

logger = get_logger()

router = APIRouter(prefix="/public", tags=["public"])


def _request_metadata(request: Request) -> Dict[str, Any]:
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
        "referrer": request.headers.get("referer"),
    }


@router.get("/widgets/{widget_id}/config")
async def get_widget_config(
    widget_id: str,
    host: Optional[str] = Depends(get_origin_host),
    chat: ChatService = Depends(get_chat_service),
):
    """Widget display settings for an allowed embedding origin."""
    widget = await chat.get_embeddable_widget(widget_id, host)
    return success(widget.public_config())


@router.post("/widgets/{widget_id}/sessions", status_code=201)
async def create_widget_session(
    widget_id: str,
    request: Request,
    host: Optional[str] = Depends(get_origin_host),
    chat: ChatService = Depends(get_chat_service),
):
    """Start an embedded chat session."""
    session = await chat.create_widget_session(widget_id, host, _request_metadata(request))
    logger.info("widget_session_created", widget_id=widget_id, session_id=str(session.id))
    return success(
        {
            "session_id": str(session.id),
            "name": session.name,
            "widget_id": session.widget_id,
            "status": session.status.value,
            "created_at": session.created_at.isoformat(),
        },
        message="Chat session created",
    )


@router.post("/widgets/{widget_id}/validate-domain")
async def validate_domain(
    widget_id: str,
    body: DomainCheck,
    chat: ChatService = Depends(get_chat_service),
):
    """Report whether ``domain`` may embed the widget."""
    widget = await chat.get_widget(widget_id)
    host = host_from_url(body.domain)
    allowed = widget.is_active and is_allowed(widget, host)
    return success({"allowed": allowed, "domain": host})


@router.get("/chat/sessions/{session_id}/messages")
async def list_messages(
    session_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    chat: ChatService = Depends(get_chat_service),
):
    """Messages of an embedded session, oldest first."""
    session = await chat.get_public_session(session_id)
    result = await chat.list_messages(session, page=page, limit=limit)
    return success(
        {
            "messages": [m.model_dump(mode="json") for m in result.messages],
            "pagination": {"page": result.page, "limit": result.limit, "total": result.total},
        }
    )


@router.post("/chat/sessions/{session_id}/messages", status_code=201)
async def send_message(
    session_id: UUID,
    body: MessageCreate,
    chat: ChatService = Depends(get_chat_service),
    queue: SessionQueue = Depends(get_request_queue),
):
    """
    Stores the visitor message and the assistant reply.
    Sends for one session run one at a time.
    """
    session = await chat.get_public_session(session_id)
    try:
        exchange = await queue.enqueue_request(
            session.id, chat.send_message, session, body.content, body.type, body.metadata
        )
    except TimeoutError:
        raise RequestTimeout()
    return success(
        {
            "user_message": exchange.user_message.model_dump(mode="json"),
            "ai_message": exchange.ai_message.model_dump(mode="json"),
        }
    )


@router.post("/chat/sessions/{session_id}/typing")
async def update_typing(
    session_id: UUID,
    body: TypingUpdate,
    chat: ChatService = Depends(get_chat_service),
):
    session = await chat.get_public_session(session_id)
    status = await chat.update_typing(session, body.client_id, body.is_typing)
    return success(status.model_dump(mode="json"))
