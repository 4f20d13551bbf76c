"""Request bodies and the success envelope shared by the routers."""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from ..config import get_settings

MAX_MESSAGE_LENGTH = get_settings().MAX_MESSAGE_LENGTH


def success(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    """Wrap a payload in the success envelope."""
    body: Dict[str, Any] = {"status": "success", "data": data}
    if message:
        body["message"] = message
    return body


class MessageCreate(BaseModel):
    """Defines the structure for message creation requests"""
    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    type: Literal["text", "image", "file"] = "text"
    metadata: Optional[Dict[str, Any]] = None


class TypingUpdate(BaseModel):
    is_typing: bool
    client_id: str = Field(..., min_length=1, max_length=100)


class OwnerTypingUpdate(BaseModel):
    is_typing: bool


class DomainCheck(BaseModel):
    domain: str = Field(..., min_length=1, max_length=255)


class SessionCreate(BaseModel):
    """Body for starting a direct session."""
    widget_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class GuestTokenRequest(BaseModel):
    client_id: str = Field(..., min_length=1, max_length=100)
    session_id: Optional[str] = None
    widget_id: Optional[str] = None
