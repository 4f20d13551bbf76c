"""Domain models for the widget chat application."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class SessionStatus(str, Enum):
    """Lifecycle status of a chat session."""

    ACTIVE = "active"
    ENDED = "ended"


class ContextMode(str, Enum):
    """How a session was started."""

    EMBEDDED = "embedded"  # public widget embed, no user
    DIRECT = "direct"  # authenticated user chat


class User(BaseModel):
    """Account that owns widgets and direct sessions."""

    id: str
    name: str = ""
    api_token: Optional[str] = None
    is_active: bool = True


class Widget(BaseModel):
    """Embeddable chat surface."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: Optional[str] = None
    name: str = ""
    title: Optional[str] = None
    subtitle: Optional[str] = None
    is_active: bool = True
    allowed_domains: Optional[List[str]] = None
    visual_settings: Dict[str, Any] = Field(default_factory=dict)
    behavioral_settings: Dict[str, Any] = Field(default_factory=dict)
    content_settings: Dict[str, Any] = Field(default_factory=dict)
    context_rule_id: Optional[str] = None
    knowledge_base_ids: List[str] = Field(default_factory=list)

    @property
    def welcome_message(self) -> Optional[str]:
        """Welcome text configured in the content settings, if any."""
        message = self.content_settings.get("welcomeMessage")
        return message or None

    def public_config(self) -> Dict[str, Any]:
        """Settings that may be shown to an anonymous embed."""
        return {
            "id": self.id,
            "title": self.title,
            "subtitle": self.subtitle,
            "visual_settings": self.visual_settings,
            "behavioral_settings": self.behavioral_settings,
            "content_settings": self.content_settings,
            "context_rule_id": self.context_rule_id,
            "knowledge_base_ids": self.knowledge_base_ids,
        }


class ChatSession(BaseModel):
    """One conversation tied to a widget or to a user."""

    id: UUID = Field(default_factory=uuid4)
    status: SessionStatus = SessionStatus.ACTIVE
    widget_id: Optional[str] = None
    user_id: Optional[str] = None
    context_mode: ContextMode = ContextMode.EMBEDDED
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def name(self) -> str:
        """Short display name derived from the id."""
        return f"Chat {str(self.id)[:8]}"

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE


class ChatMessage(BaseModel):
    """A single append-only turn in a session."""

    id: UUID = Field(default_factory=uuid4)
    session_id: UUID
    role: MessageRole = MessageRole.USER
    content: str
    type: str = "text"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class TypingStatus(BaseModel):
    """Transient typing indicator, broadcast but never stored."""

    session_id: UUID
    user_id: str
    is_typing: bool
    timestamp: datetime = Field(default_factory=utcnow)


class CredentialKind(str, Enum):
    """Variant of a channel token."""

    USER = "user"
    GUEST = "guest"


class Credential(BaseModel):
    """The identity behind a validated channel token."""

    kind: CredentialKind
    token: str
    expires_at: datetime
    user_id: Optional[str] = None
    client_id: Optional[str] = None
    channels: List[str] = Field(default_factory=list)
    abilities: List[str] = Field(default_factory=list)


class IssuedToken(BaseModel):
    """Token handed back to the caller at issuance."""

    token: str
    expires_at: datetime
    user_id: Optional[str] = None
    channels: Optional[List[str]] = None


class Envelope(BaseModel):
    """Message envelope carried over the transport."""

    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None
    id: Optional[str] = None
