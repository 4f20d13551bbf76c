"""Chat session protocol: sessions, messages and typing events."""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog

from ..domain.channels import chat_channel
from ..domain.errors import (
    GenerationFailed,
    SessionForbidden,
    SessionNotFound,
    WidgetNotFound,
)
from ..domain.models import (
    ChatMessage,
    ChatSession,
    ContextMode,
    MessageRole,
    SessionStatus,
    TypingStatus,
    User,
    Widget,
)
from ..metrics import MESSAGES
from ..repositories.base import Repository
from .broadcaster import ChannelHub
from .gatekeeper import ensure_embeddable
from .llm import FALLBACK_REPLY, GenerationService

logger = structlog.get_logger()

MESSAGE_EVENT = "chat.message"
TYPING_EVENT = "chat.typing"


@dataclass
class MessageExchange:
    """The user turn and the assistant reply produced for it."""

    user_message: ChatMessage
    ai_message: ChatMessage


@dataclass
class MessagePage:
    """A page of session messages in ascending creation order."""

    messages: List[ChatMessage]
    page: int
    limit: int
    total: int


class ChatService:
    """Coordinates storage, generation and broadcast for chat sessions."""

    def __init__(
        self,
        repository: Repository,
        generator: GenerationService,
        hub: ChannelHub,
        generation_timeout: float = 30.0,
    ) -> None:
        self.repository = repository
        self.generator = generator
        self.hub = hub
        self.generation_timeout = generation_timeout

    async def get_widget(self, widget_id: str) -> Widget:
        widget = await self.repository.get_widget(widget_id)
        if widget is None:
            raise WidgetNotFound(widget_id)
        return widget

    async def get_embeddable_widget(self, widget_id: str, host: Optional[str]) -> Widget:
        """Load a widget and apply the active and origin checks."""
        widget = await self.get_widget(widget_id)
        ensure_embeddable(widget, host)
        return widget

    async def create_widget_session(
        self,
        widget_id: str,
        host: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatSession:
        """Start an embedded session, seeding the widget's welcome message."""
        widget = await self.get_embeddable_widget(widget_id, host)
        session = ChatSession(
            widget_id=widget.id,
            context_mode=ContextMode.EMBEDDED,
            metadata={**(metadata or {}), "is_public": True},
        )
        await self.repository.create_session(session)

        if widget.welcome_message:
            await self._store(
                ChatMessage(
                    session_id=session.id,
                    role=MessageRole.SYSTEM,
                    content=widget.welcome_message,
                )
            )
        return session

    async def create_user_session(
        self,
        user: User,
        widget_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatSession:
        """Start a direct session owned by an authenticated user."""
        if widget_id is not None:
            await self.get_widget(widget_id)
        session = ChatSession(
            user_id=user.id,
            widget_id=widget_id,
            context_mode=ContextMode.DIRECT,
            metadata={**(metadata or {}), "is_public": False},
        )
        return await self.repository.create_session(session)

    async def get_public_session(self, session_id: UUID) -> ChatSession:
        """An active embedded session, or SessionNotFound."""
        session = await self.repository.get_session(session_id)
        if session is None or session.context_mode != ContextMode.EMBEDDED or not session.is_active:
            raise SessionNotFound(session_id)
        return session

    async def get_owned_session(self, session_id: UUID, user: User) -> ChatSession:
        """A session owned by ``user``."""
        session = await self.repository.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if str(session.user_id) != str(user.id):
            logger.warning("session_access_denied", session_id=str(session_id), user_id=user.id)
            raise SessionForbidden(session_id)
        return session

    async def end_session(self, session: ChatSession) -> ChatSession:
        return await self.repository.update_session_status(session.id, SessionStatus.ENDED)

    async def list_messages(self, session: ChatSession, page: int = 1, limit: int = 50) -> MessagePage:
        """Read back messages, oldest first."""
        offset = (page - 1) * limit
        messages = await self.repository.get_messages(session.id, limit=limit, offset=offset)
        total = await self.repository.count_messages(session.id)
        return MessagePage(messages=messages, page=page, limit=limit, total=total)

    async def send_message(
        self,
        session: ChatSession,
        content: str,
        message_type: str = "text",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MessageExchange:
        """Store the user turn, generate and store the reply, broadcast both.

        The returned exchange is the authoritative delivery to the sender;
        the broadcast only serves other subscribers.
        """
        if not session.is_active:
            raise SessionNotFound(session.id)

        history = await self.repository.get_messages(session.id, limit=10_000)
        user_message = await self._store(
            ChatMessage(
                session_id=session.id,
                role=MessageRole.USER,
                content=content,
                type=message_type,
                metadata=metadata or {},
            )
        )
        await self._broadcast_message(user_message)

        widget = None
        if session.widget_id:
            widget = await self.repository.get_widget(session.widget_id)

        try:
            result = await asyncio.wait_for(
                self.generator.generate(
                    content,
                    history,
                    widget=widget,
                    session_id=str(session.id),
                ),
                timeout=self.generation_timeout,
            )
            reply, reply_meta = result.content, {
                "model": result.model,
                "processing_time": result.processing_time,
                "knowledge_used": bool(result.knowledge_base_ids),
            }
        except GenerationFailed as e:
            logger.warning("assistant_reply_fallback", session_id=str(session.id), reason=e.message)
            reply, reply_meta = FALLBACK_REPLY, {"fallback": True}
        except asyncio.TimeoutError:
            logger.warning("assistant_reply_fallback", session_id=str(session.id), reason="timeout")
            reply, reply_meta = FALLBACK_REPLY, {"fallback": True}

        ai_message = await self._store(
            ChatMessage(
                session_id=session.id,
                role=MessageRole.ASSISTANT,
                content=reply,
                metadata=reply_meta,
            )
        )
        await self._broadcast_message(ai_message)

        logger.info(
            "message_processed",
            session_id=str(session.id),
            user_message_length=len(content),
            ai_response_length=len(reply),
        )
        return MessageExchange(user_message=user_message, ai_message=ai_message)

    async def update_typing(self, session: ChatSession, actor_id: str, is_typing: bool) -> TypingStatus:
        """Broadcast a typing indicator; nothing is stored."""
        status = TypingStatus(session_id=session.id, user_id=actor_id, is_typing=is_typing)
        await self.hub.broadcast(
            chat_channel(session.id), TYPING_EVENT, status.model_dump(mode="json")
        )
        return status

    async def _store(self, message: ChatMessage) -> ChatMessage:
        stored = await self.repository.add_message(message)
        MESSAGES.labels(role=message.role.value).inc()
        return stored

    async def _broadcast_message(self, message: ChatMessage) -> None:
        await self.hub.broadcast(
            chat_channel(message.session_id), MESSAGE_EVENT, message.model_dump(mode="json")
        )
