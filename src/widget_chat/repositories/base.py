"""Base repository interface."""

from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

from ..domain.models import ChatMessage, ChatSession, SessionStatus, User, Widget


class Repository(ABC):
    """Abstract storage for users, widgets, sessions and messages."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        """Retrieve a user by ID."""
        pass

    @abstractmethod
    async def get_user_by_api_token(self, api_token: str) -> Optional[User]:
        """Retrieve the user owning a bearer token."""
        pass

    @abstractmethod
    async def save_user(self, user: User) -> User:
        """Insert or replace a user."""
        pass

    @abstractmethod
    async def get_widget(self, widget_id: str) -> Optional[Widget]:
        """Retrieve a widget by ID."""
        pass

    @abstractmethod
    async def save_widget(self, widget: Widget) -> Widget:
        """Insert or replace a widget."""
        pass

    @abstractmethod
    async def get_session(self, session_id: UUID) -> Optional[ChatSession]:
        """Retrieve a chat session by ID."""
        pass

    @abstractmethod
    async def create_session(self, session: ChatSession) -> ChatSession:
        """Store a new chat session."""
        pass

    @abstractmethod
    async def update_session_status(
        self, session_id: UUID, status: SessionStatus
    ) -> ChatSession:
        """Change the status of a session."""
        pass

    @abstractmethod
    async def add_message(self, message: ChatMessage) -> ChatMessage:
        """Append a message to a session."""
        pass

    @abstractmethod
    async def get_messages(
        self, session_id: UUID, limit: int = 50, offset: int = 0
    ) -> List[ChatMessage]:
        """Get messages for a session, oldest first, with pagination."""
        pass

    @abstractmethod
    async def count_messages(self, session_id: UUID) -> int:
        """Count the messages of a session."""
        pass
