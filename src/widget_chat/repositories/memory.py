"""In-memory repository implementation."""

import asyncio
from typing import Dict, Iterable, List, Optional
from uuid import UUID

import structlog

from ..domain.models import (
    ChatMessage,
    ChatSession,
    SessionStatus,
    User,
    Widget,
    utcnow,
)
from .base import Repository

logger = structlog.get_logger()


class InMemoryRepository(Repository):
    """Repository backed by dictionaries guarded by an asyncio lock."""

    def __init__(
        self,
        users: Optional[Iterable[User]] = None,
        widgets: Optional[Iterable[Widget]] = None,
    ) -> None:
        """Initialize storage, optionally seeded with users and widgets."""
        self._users: Dict[str, User] = {u.id: u for u in users or []}
        self._widgets: Dict[str, Widget] = {w.id: w for w in widgets or []}
        self._sessions: Dict[UUID, ChatSession] = {}
        self._messages: Dict[UUID, List[ChatMessage]] = {}
        self._lock = asyncio.Lock()
        logger.info("repository_initialized")

    async def get_user(self, user_id: str) -> Optional[User]:
        """Retrieve a user by ID."""
        async with self._lock:
            return self._users.get(str(user_id))

    async def get_user_by_api_token(self, api_token: str) -> Optional[User]:
        """Retrieve the user owning a bearer token."""
        async with self._lock:
            for user in self._users.values():
                if user.api_token and user.api_token == api_token:
                    return user
            return None

    async def save_user(self, user: User) -> User:
        """Insert or replace a user."""
        async with self._lock:
            self._users[user.id] = user
        return user

    async def get_widget(self, widget_id: str) -> Optional[Widget]:
        """Retrieve a widget by ID."""
        async with self._lock:
            widget = self._widgets.get(widget_id)
            if widget is None:
                logger.warning("widget_not_found", widget_id=widget_id)
            return widget

    async def save_widget(self, widget: Widget) -> Widget:
        """Insert or replace a widget."""
        async with self._lock:
            self._widgets[widget.id] = widget
            logger.info("widget_saved", widget_id=widget.id)
        return widget

    async def get_session(self, session_id: UUID) -> Optional[ChatSession]:
        """Retrieve a chat session by ID."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.warning("session_not_found", session_id=str(session_id))
            return session

    async def create_session(self, session: ChatSession) -> ChatSession:
        """Store a new chat session."""
        async with self._lock:
            self._sessions[session.id] = session
            self._messages[session.id] = []
            logger.info(
                "session_created",
                session_id=str(session.id),
                widget_id=session.widget_id,
                context_mode=session.context_mode.value,
            )
        return session

    async def update_session_status(
        self, session_id: UUID, status: SessionStatus
    ) -> ChatSession:
        """Change the status of a session."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise ValueError(f"Session {session_id} not found")
            session.status = status
            session.updated_at = utcnow()
            logger.info(
                "session_status_changed",
                session_id=str(session_id),
                status=status.value,
            )
            return session

    async def add_message(self, message: ChatMessage) -> ChatMessage:
        """Append a message and touch the owning session."""
        async with self._lock:
            session = self._sessions.get(message.session_id)
            if not session:
                logger.error(
                    "session_not_found_for_message",
                    session_id=str(message.session_id),
                )
                raise ValueError(f"Session {message.session_id} not found")

            self._messages.setdefault(message.session_id, []).append(message)
            session.updated_at = message.created_at

            logger.info(
                "message_added",
                session_id=str(message.session_id),
                message_role=message.role.value,
            )
            return message

    async def get_messages(
        self, session_id: UUID, limit: int = 50, offset: int = 0
    ) -> List[ChatMessage]:
        """Get messages for a session, oldest first, with pagination."""
        async with self._lock:
            if session_id not in self._sessions:
                logger.error(
                    "session_not_found_for_messages", session_id=str(session_id)
                )
                raise ValueError(f"Session {session_id} not found")

            # sorted() is stable, so equal timestamps keep insertion order
            messages = sorted(
                self._messages.get(session_id, []), key=lambda m: m.created_at
            )
            return messages[offset : offset + limit]

    async def count_messages(self, session_id: UUID) -> int:
        """Count the messages of a session."""
        async with self._lock:
            return len(self._messages.get(session_id, []))
