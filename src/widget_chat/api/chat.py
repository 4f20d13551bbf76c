"""Authenticated chat endpoints for direct sessions."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from structlog import get_logger

from ..domain.errors import RequestTimeout
from ..domain.models import User
from ..services.chat import ChatService
from .dependencies import get_chat_service, get_current_user, get_request_queue
from .request_queue import SessionQueue
from .schemas import MessageCreate, OwnerTypingUpdate, SessionCreate, success

logger = get_logger()

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/sessions", status_code=201)
async def create_session(
    body: SessionCreate,
    user: User = Depends(get_current_user),
    chat: ChatService = Depends(get_chat_service),
):
    """Starts a new direct session owned by the caller"""
    session = await chat.create_user_session(user, body.widget_id, body.metadata)
    logger.info("direct_session_created", session_id=str(session.id), user_id=user.id)
    data = session.model_dump(mode="json")
    data["name"] = session.name
    return success(data, message="Chat session created")


@router.get("/sessions/{session_id}/messages")
async def list_messages(
    session_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    user: User = Depends(get_current_user),
    chat: ChatService = Depends(get_chat_service),
):
    session = await chat.get_owned_session(session_id, user)
    result = await chat.list_messages(session, page=page, limit=limit)
    return success(
        {
            "messages": [m.model_dump(mode="json") for m in result.messages],
            "pagination": {"page": result.page, "limit": result.limit, "total": result.total},
        }
    )


@router.post("/sessions/{session_id}/messages", status_code=201)
async def send_message(
    session_id: UUID,
    body: MessageCreate,
    user: User = Depends(get_current_user),
    chat: ChatService = Depends(get_chat_service),
    queue: SessionQueue = Depends(get_request_queue),
):
    """Processes user message and generates AI response"""
    session = await chat.get_owned_session(session_id, user)
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


@router.post("/sessions/{session_id}/typing")
async def update_typing(
    session_id: UUID,
    body: OwnerTypingUpdate,
    user: User = Depends(get_current_user),
    chat: ChatService = Depends(get_chat_service),
):
    session = await chat.get_owned_session(session_id, user)
    status = await chat.update_typing(session, user.id, body.is_typing)
    return success(status.model_dump(mode="json"))


@router.post("/sessions/{session_id}/end")
async def end_session(
    session_id: UUID,
    user: User = Depends(get_current_user),
    chat: ChatService = Depends(get_chat_service),
):
    """Marks a session as ended; further sends are rejected"""
    session = await chat.get_owned_session(session_id, user)
    ended = await chat.end_session(session)
    logger.info("session_ended", session_id=str(session_id), user_id=user.id)
    return success({"session_id": str(ended.id), "status": ended.status.value})
