import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app.api.router import api_router
from app.api.v1.routes import realtime
from app.core.config import Settings, get_settings
from app.core.db import close_engine, create_schema, get_session_factory, init_engine
from app.core.logging import configure_logging
from app.core.rate_limit import InMemoryRateLimiter, RateLimitRule
from app.infra.db.seed import seed_help_chat_defaults
from app.infra.realtime import ConnectionHub
from app.infra.store import HelpChatStore, InMemoryHelpChatStore, SqlHelpChatStore
from app.services.assignment_policy import AutoAssignmentPolicy, HelpChatSettingsService
from app.services.assignment_service import AssignmentCoordinator
from app.services.conversation_registry import ConversationRegistry
from app.services.help_chat_dispatcher import HelpChatDispatcher
from app.services.help_chat_service import HelpChatService
from app.services.session_auth import SessionAuthenticator

settings = get_settings()
settings.validate_security_settings()
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


def build_help_chat(app: FastAPI, store: HelpChatStore, settings: Settings) -> None:
    hub = ConnectionHub()
    registry = ConversationRegistry(store, hub)
    settings_service = HelpChatSettingsService(
        store, default_mode=settings.help_chat_default_assignment_mode
    )
    coordinator = AssignmentCoordinator(
        registry,
        AutoAssignmentPolicy(store),
        settings_service,
    )
    messages = HelpChatService(
        registry, max_message_length=settings.help_chat_max_message_length
    )
    limiter = InMemoryRateLimiter()
    rule = RateLimitRule(
        limit=settings.help_chat_rate_limit,
        window_seconds=settings.help_chat_rate_limit_window_seconds,
    )

    app.state.help_chat_store = store
    app.state.connection_hub = hub
    app.state.conversation_registry = registry
    app.state.help_chat_settings = settings_service
    app.state.help_chat_service = messages
    app.state.rate_limiter = limiter
    app.state.rate_limit_rule = rule
    app.state.help_chat_dispatcher = HelpChatDispatcher(
        hub,
        SessionAuthenticator(hub, registry),
        messages,
        coordinator,
        limiter,
        rule,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize infrastructure
    engine = None
    if settings.help_chat_store == "memory":
        store: HelpChatStore = InMemoryHelpChatStore()
        logger.warning("Using the in-memory help chat store; data is lost on restart")
    else:
        engine = init_engine()
        if settings.db_auto_create:
            await create_schema(engine)
        store = SqlHelpChatStore(get_session_factory())

    build_help_chat(app, store, settings)
    if settings.db_seed_defaults:
        await seed_help_chat_defaults(store, app.state.help_chat_settings)

    yield

    # Graceful shutdown
    if engine is not None:
        await close_engine(engine)


app = FastAPI(
    title="Help Chat API",
    version="0.1.0",
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
    lifespan=lifespan,
)

if settings.trusted_hosts:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.trusted_hosts,
    )

if settings.force_https:
    app.add_middleware(HTTPSRedirectMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-User-Id", "X-User-Role"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault(
        "Referrer-Policy",
        "strict-origin-when-cross-origin",
    )
    if settings.force_https:
        response.headers.setdefault(
            "Strict-Transport-Security",
            "max-age=31536000; includeSubDomains",
        )
    return response


app.include_router(realtime.router)
app.include_router(api_router, prefix="/api")


@app.get("/", tags=["meta"])
async def root() -> dict[str, str]:
    return {"service": "help-chat-backend", "status": "ok"}
