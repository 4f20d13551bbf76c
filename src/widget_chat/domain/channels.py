"""Channel naming shared by the server and the embed client.

Names must match byte for byte on both sides: ``user.{id}``,
``chat.{session_id}``, ``widget.{widget_id}`` and ``public``.
"""

from typing import NamedTuple, Optional, Union
from uuid import UUID

PUBLIC_CHANNEL = "public"

USER_PREFIX = "user"
CHAT_PREFIX = "chat"
WIDGET_PREFIX = "widget"


class ChannelName(NamedTuple):
    """A channel name split into its class and identifier."""

    kind: str
    identifier: Optional[str]


def user_channel(user_id: Union[str, int]) -> str:
    return f"{USER_PREFIX}.{user_id}"


def chat_channel(session_id: Union[str, UUID]) -> str:
    return f"{CHAT_PREFIX}.{session_id}"


def widget_channel(widget_id: str) -> str:
    return f"{WIDGET_PREFIX}.{widget_id}"


def parse_channel(name: str) -> Optional[ChannelName]:
    """Split a channel name, returning None for unknown patterns."""
    if name == PUBLIC_CHANNEL:
        return ChannelName(PUBLIC_CHANNEL, None)
    kind, sep, identifier = name.partition(".")
    if not sep or not identifier:
        return None
    if kind not in (USER_PREFIX, CHAT_PREFIX, WIDGET_PREFIX):
        return None
    return ChannelName(kind, identifier)
