from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from time import perf_counter

from fastapi import FastAPI, Request
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response

from app.api.v1.router import api_router
from app.core.errors import add_exception_handlers, success_response
from app.core.logging import configure_logging
from app.core.settings import get_settings
from app.db.session import init_db, open_session
from app.realtime import ConnectionManager, ConversationSessionManager, PresenceTracker

settings = get_settings()
configure_logging(debug=settings.debug, app_name=settings.app_name)
logger = logging.getLogger(__name__)


def _build_realtime(app: FastAPI) -> ConversationSessionManager:
    connections = ConnectionManager(
        max_subscriptions_per_connection=settings.ws_max_subscriptions_per_connection,
        outgoing_queue_size=settings.ws_outgoing_queue_size,
    )
    presence = PresenceTracker()
    app.state.connection_manager = connections
    app.state.presence = presence
    app.state.session_manager = ConversationSessionManager(
        connection_manager=connections,
        presence=presence,
        session_factory=open_session,
    )
    return app.state.session_manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup started environment=%s", settings.environment)
    init_db()
    if settings.auth_bypass_enabled:
        logger.warning("WebSocket auth bypass is enabled environment=%s", settings.environment)
    sessions = _build_realtime(app)
    logger.info("Application startup completed")
    yield
    closed = await sessions.connections.close_all()
    logger.info("Application shutdown completed closed_connections=%s", closed)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        lifespan=lifespan,
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=settings.cors_origins,
                allow_credentials=True,
                allow_methods=["GET", "POST", "PUT", "OPTIONS"],
                allow_headers=["Content-Type", "Authorization", "Origin", "Accept"],
            )
        ],
    )
    logger.debug("CORS configured origins=%s", settings.cors_origins)

    if settings.debug:
        @app.middleware("http")
        async def request_timing(request: Request, call_next) -> Response:
            start = perf_counter()
            response = await call_next(request)
            logger.debug(
                "HTTP %s %s status=%s duration_ms=%.2f",
                request.method,
                request.url.path,
                response.status_code,
                (perf_counter() - start) * 1000,
            )
            return response

    add_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get("/health")
    async def health_check(request: Request):
        sessions: ConversationSessionManager | None = getattr(request.app.state, "session_manager", None)
        if sessions is None:
            return success_response({"ok": True, "connections": 0, "online": 0})
        online = await sessions.presence.online()
        connections = await sessions.connections.connection_count()
        return success_response({"ok": True, "connections": connections, "online": len(online)})

    return app


app = create_app()
