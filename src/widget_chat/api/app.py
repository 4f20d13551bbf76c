"""
FastAPI Application Module

Backend for an embeddable AI chat widget: public widget endpoints, direct
sessions for authenticated users, channel token issuance and the socket
transport that fans chat events out to subscribers.

Key Features:
- Origin-checked public embeds
- Guest and user channel tokens with per-channel authorization
- Per-session request serialization and rate-limited token issuance
- Structured logging, Prometheus metrics, CORS and OpenTelemetry support
"""

from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import generate_latest
from structlog import get_logger

from ..cache.base import TokenStore
from ..cache.memory import InMemoryTokenStore
from ..cache.redis_store import RedisTokenStore
from ..config import Settings, get_settings
from ..domain.errors import ChatError
from ..metrics import CUSTOM_REGISTRY, ERRORS, REQUESTS
from ..repositories.base import Repository
from ..repositories.memory import InMemoryRepository
from ..services.authorizer import ChannelAuthorizer
from ..services.broadcaster import ChannelHub
from ..services.chat import ChatService
from ..services.llm import GenerationService
from ..services.status import RealtimeStatusProbe
from . import chat, public, websocket
from .rate_limiter import RateLimiter
from .request_queue import SessionQueue

logger = get_logger()


def _field_errors(exc: RequestValidationError) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(location) or "request"
        errors.setdefault(field, []).append(error.get("msg", "Invalid value"))
    return errors


def _build_store(settings: Settings) -> TokenStore:
    if settings.CACHE_URL:
        return RedisTokenStore.from_url(settings.CACHE_URL)
    return InMemoryTokenStore()


def create_app(
    settings: Optional[Settings] = None,
    repository: Optional[Repository] = None,
    store: Optional[TokenStore] = None,
    generator: Optional[GenerationService] = None,
) -> FastAPI:
    """Build the application with its services attached to ``app.state``."""
    settings = settings or get_settings()
    repository = repository or InMemoryRepository()
    store = store or _build_store(settings)
    generator = generator or GenerationService(
        api_key=settings.GEMINI_API_KEY,
        model_name=settings.GEMINI_MODEL,
        history_window=settings.GENERATION_HISTORY,
    )
    hub = ChannelHub()
    auth_rate_limiter = RateLimiter(
        rate_limit=settings.AUTH_TOKEN_RATE_LIMIT, time_window=settings.RATE_LIMIT_WINDOW
    )
    guest_rate_limiter = RateLimiter(
        rate_limit=settings.GUEST_TOKEN_RATE_LIMIT, time_window=settings.RATE_LIMIT_WINDOW
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handles app startup/shutdown and resource management"""
        await auth_rate_limiter.start()
        await guest_rate_limiter.start()
        logger.info("application_startup_complete")

        yield

        await auth_rate_limiter.stop()
        await guest_rate_limiter.stop()
        await store.close()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Real-time core of an embeddable AI chat widget",
        version=settings.VERSION,
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.repository = repository
    app.state.store = store
    app.state.hub = hub
    app.state.generator = generator
    app.state.authorizer = ChannelAuthorizer(
        store,
        repository,
        secret=settings.APP_SECRET,
        auth_ttl=settings.AUTH_TOKEN_TTL,
        guest_ttl=settings.GUEST_TOKEN_TTL,
    )
    app.state.chat_service = ChatService(
        repository, generator, hub, generation_timeout=settings.GENERATION_TIMEOUT
    )
    app.state.request_queue = SessionQueue(
        max_concurrent=settings.MAX_CONCURRENT_REQUESTS,
        queue_timeout=settings.REQUEST_TIMEOUT,
    )
    app.state.status_probe = RealtimeStatusProbe(
        store,
        host=settings.REALTIME_HOST,
        port=settings.REALTIME_PORT,
        ttl=settings.STATUS_CACHE_TTL,
    )
    app.state.auth_rate_limiter = auth_rate_limiter
    app.state.guest_rate_limiter = guest_rate_limiter

    # Enable cross-origin requests from embedding pages
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Set up request tracing
    FastAPIInstrumentor.instrument_app(app)

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Tracks requests"""
        logger.info("request_started", path=request.url.path)
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("request_failed", path=request.url.path, error=str(e))
            raise
        route = request.scope.get("route")
        REQUESTS.labels(path=getattr(route, "path", "unmatched")).inc()
        return response

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        ERRORS.labels(error_code=exc.error_code).inc()
        logger.warning(
            "request_rejected",
            path=request.url.path,
            error_code=exc.error_code,
            status_code=exc.status_code,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        ERRORS.labels(error_code="validation_failed").inc()
        return JSONResponse(
            status_code=422,
            content={
                "status": "error",
                "message": "Validation failed",
                "error_code": "validation_failed",
                "errors": _field_errors(exc),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        ERRORS.labels(error_code="internal_error").inc()
        logger.error("unhandled_error", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "message": "Internal server error",
                "error_code": "internal_error",
            },
        )

    app.include_router(public.router)
    app.include_router(chat.router)
    app.include_router(websocket.router)

    @app.get("/metrics")
    async def metrics():
        """Provides Prometheus metrics for system monitoring"""
        return Response(generate_latest(CUSTOM_REGISTRY), media_type="text/plain")

    return app


app = create_app()
