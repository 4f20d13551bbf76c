"""Channel token issuance and per-channel authorization."""

import hashlib
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional
from uuid import UUID

import structlog
from jose import JWTError, jwt

from ..cache.base import TokenStore
from ..domain.channels import (
    CHAT_PREFIX,
    PUBLIC_CHANNEL,
    USER_PREFIX,
    WIDGET_PREFIX,
    chat_channel,
    parse_channel,
    widget_channel,
)
from ..domain.errors import ValidationFailed
from ..domain.models import ContextMode, Credential, CredentialKind, IssuedToken, User
from ..metrics import TOKENS_ISSUED
from ..repositories.base import Repository

logger = structlog.get_logger()

TOKEN_PURPOSE = "websocket"
CONNECT_ABILITY = "websocket:connect"
GUEST_KEY_PREFIX = "websocket_guest_token:"
USER_KEY_PREFIX = "websocket_token:"
ALGORITHM = "HS256"


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class ChannelAuthorizer:
    """Issues channel tokens and decides who may subscribe to what."""

    def __init__(
        self,
        store: TokenStore,
        repository: Repository,
        secret: str,
        auth_ttl: int = 3600,
        guest_ttl: int = 900,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._repository = repository
        self._secret = secret
        self.auth_ttl = auth_ttl
        self.guest_ttl = guest_ttl
        self._clock = clock

    def _user_key(self, user_id: str, purpose: str = TOKEN_PURPOSE) -> str:
        return f"{USER_KEY_PREFIX}{user_id}:{purpose}"

    async def issue_authenticated_token(self, user: User) -> IssuedToken:
        """Issue a one-hour connect token, revoking earlier ones.

        The active token id is kept under a single key per user and purpose,
        so overwriting it is the revocation.
        """
        now = self._clock()
        expires = now + self.auth_ttl
        token_id = uuid.uuid4().hex
        claims = {
            "sub": str(user.id),
            "jti": token_id,
            "purpose": TOKEN_PURPOSE,
            "abilities": [CONNECT_ABILITY],
            "iat": int(now),
            "exp": expires,
        }
        token = jwt.encode(claims, self._secret, algorithm=ALGORITHM)
        await self._store.put(
            self._user_key(user.id),
            {"jti": token_id, "expires_at": expires},
            self.auth_ttl,
        )
        TOKENS_ISSUED.labels(kind=CredentialKind.USER.value).inc()
        logger.info(
            "websocket_token_issued",
            user_id=user.id,
            token_expiry=_to_datetime(expires).isoformat(),
        )
        return IssuedToken(token=token, user_id=user.id, expires_at=_to_datetime(expires))

    async def issue_guest_token(
        self,
        client_id: str,
        session_id: Optional[str] = None,
        widget_id: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> IssuedToken:
        """Issue a fifteen-minute guest token scoped to a session and/or widget."""
        if not session_id and not widget_id:
            raise ValidationFailed(
                "Either session_id or widget_id must be provided",
                errors={
                    "session_id": ["session_id or widget_id is required"],
                    "widget_id": ["session_id or widget_id is required"],
                },
                error_code="missing_channel_identifiers",
            )

        channels = self.guest_channels(session_id=session_id, widget_id=widget_id)
        now = self._clock()
        seed = f"{client_id}{now}{uuid.uuid4().hex}"
        token = hashlib.sha256(seed.encode("utf-8")).hexdigest()
        expires = now + self.guest_ttl
        await self._store.put(
            f"{GUEST_KEY_PREFIX}{token}",
            {
                "client_id": client_id,
                "channels": channels,
                "ip": ip,
                "created_at": _to_datetime(now).isoformat(),
                "expires_at": expires,
            },
            self.guest_ttl,
        )
        TOKENS_ISSUED.labels(kind=CredentialKind.GUEST.value).inc()
        logger.info(
            "websocket_guest_token_issued",
            client_id=client_id,
            session_id=session_id,
            widget_id=widget_id,
        )
        return IssuedToken(token=token, expires_at=_to_datetime(expires), channels=channels)

    @staticmethod
    def guest_channels(
        session_id: Optional[str] = None, widget_id: Optional[str] = None
    ) -> List[str]:
        """Channel list granted to a guest token, in a fixed order."""
        channels = []
        if widget_id:
            channels.append(widget_channel(widget_id))
        if session_id:
            channels.append(chat_channel(session_id))
        channels.append(PUBLIC_CHANNEL)
        return channels

    async def resolve_credential(self, token: Optional[str]) -> Optional[Credential]:
        """Turn a presented token into a credential, or None if invalid or expired."""
        if not token:
            return None
        if "." in token:
            return await self._resolve_user_token(token)
        return await self._resolve_guest_token(token)

    async def _resolve_user_token(self, token: str) -> Optional[Credential]:
        try:
            # expiry is checked against the injected clock below
            claims = jwt.decode(
                token, self._secret, algorithms=[ALGORITHM], options={"verify_exp": False}
            )
        except JWTError:
            logger.warning("websocket_token_invalid")
            return None

        user_id = claims.get("sub")
        expires = claims.get("exp")
        if not user_id or expires is None or claims.get("purpose") != TOKEN_PURPOSE:
            return None
        if self._clock() >= float(expires):
            logger.info("websocket_token_expired", user_id=user_id)
            return None

        active = await self._store.get(self._user_key(user_id))
        if not active or active.get("jti") != claims.get("jti"):
            logger.info("websocket_token_revoked", user_id=user_id)
            return None

        return Credential(
            kind=CredentialKind.USER,
            token=token,
            user_id=str(user_id),
            expires_at=_to_datetime(float(expires)),
            abilities=list(claims.get("abilities") or []),
        )

    async def _resolve_guest_token(self, token: str) -> Optional[Credential]:
        record = await self._store.get(f"{GUEST_KEY_PREFIX}{token}")
        if not record:
            return None
        expires = float(record.get("expires_at", 0))
        if self._clock() >= expires:
            return None
        return Credential(
            kind=CredentialKind.GUEST,
            token=token,
            client_id=record.get("client_id"),
            channels=list(record.get("channels") or []),
            expires_at=_to_datetime(expires),
        )

    async def authorize_channel(self, channel_name: str, credential: Optional[Credential]) -> bool:
        """Evaluate the channel predicate for a credential."""
        if credential is None:
            return False

        parsed = parse_channel(channel_name)
        if parsed is None:
            logger.warning("channel_pattern_unknown", channel=channel_name)
            return False

        # a guest token never reaches beyond the channels fixed at issuance
        if credential.kind == CredentialKind.GUEST and channel_name not in credential.channels:
            return False

        if parsed.kind == PUBLIC_CHANNEL:
            return True
        if parsed.kind == WIDGET_PREFIX:
            return True
        if parsed.kind == USER_PREFIX:
            return credential.user_id is not None and credential.user_id == parsed.identifier
        if parsed.kind == CHAT_PREFIX:
            return await self._authorize_chat(parsed.identifier, credential)
        return False

    async def _authorize_chat(self, session_id: str, credential: Credential) -> bool:
        try:
            session_uuid = UUID(session_id)
        except ValueError:
            return False
        session = await self._repository.get_session(session_uuid)
        if session is None:
            return False
        if session.context_mode == ContextMode.EMBEDDED:
            return True
        return credential.user_id is not None and str(session.user_id) == credential.user_id

