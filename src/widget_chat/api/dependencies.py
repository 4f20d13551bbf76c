"""FastAPI dependencies resolving services from application state."""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..domain.errors import AuthenticationRequired
from ..domain.models import User
from ..repositories.base import Repository
from ..services.authorizer import ChannelAuthorizer
from ..services.chat import ChatService
from ..services.gatekeeper import origin_host
from ..services.status import RealtimeStatusProbe
from .rate_limiter import RateLimiter, enforce_rate_limit
from .request_queue import SessionQueue

bearer_scheme = HTTPBearer(auto_error=False)


def get_repository(request: Request) -> Repository:
    return request.app.state.repository


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def get_authorizer(request: Request) -> ChannelAuthorizer:
    return request.app.state.authorizer


def get_request_queue(request: Request) -> SessionQueue:
    return request.app.state.request_queue


def get_status_probe(request: Request) -> RealtimeStatusProbe:
    return request.app.state.status_probe


def get_origin_host(request: Request) -> Optional[str]:
    """Embedding host from the ``Origin`` header, else ``Referer``."""
    return origin_host(request.headers.get("origin"), request.headers.get("referer"))


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    repository: Repository = Depends(get_repository),
) -> User:
    """Resolve the bearer token to an active user."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationRequired()
    user = await repository.get_user_by_api_token(credentials.credentials)
    if user is None or not user.is_active:
        raise AuthenticationRequired()
    return user


async def auth_token_rate_limit(request: Request) -> None:
    limiter: RateLimiter = request.app.state.auth_rate_limiter
    await enforce_rate_limit(request, limiter)


async def guest_token_rate_limit(request: Request) -> None:
    limiter: RateLimiter = request.app.state.guest_rate_limiter
    await enforce_rate_limit(request, limiter)
