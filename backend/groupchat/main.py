"""Entry point for the group chat API service."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from .api import auth, groups, messages, stream, users
from .config import Settings, settings as default_settings
from .database import SessionLocal, init_db
from .logging_config import configure_logging
from .messaging import MessageIngestion
from .realtime import BroadcastDispatcher, ConnectionRegistry, RoomDirectory, RoomProtocol
from .store import ChatStore, seed_default_group


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
) -> FastAPI:
    settings = settings or default_settings
    session_factory = session_factory or SessionLocal
    configure_logging(settings.log_level)

    app = FastAPI(title=settings.project_name)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = ChatStore(session_factory)
    directory = RoomDirectory()
    registry = ConnectionRegistry(directory)
    dispatcher = BroadcastDispatcher(directory)
    join_guard = stream.membership_guard(store) if settings.ws_require_membership else None

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.store = store
    app.state.directory = directory
    app.state.registry = registry
    app.state.dispatcher = dispatcher
    app.state.ingestion = MessageIngestion(store, dispatcher)
    app.state.room_protocol = RoomProtocol(registry, dispatcher, join_guard=join_guard)

    app.include_router(auth.router, prefix=settings.api_prefix)
    app.include_router(users.router, prefix=settings.api_prefix)
    app.include_router(groups.router, prefix=settings.api_prefix)
    app.include_router(messages.router, prefix=settings.api_prefix)
    app.add_api_websocket_route(settings.websocket_path, stream.chat_stream)

    @app.get("/healthz")
    def healthcheck(request: Request) -> dict[str, Any]:
        state = request.app.state
        return {"status": "ok", "connections": len(state.registry), "rooms": len(state.directory)}

    @app.on_event("startup")
    def _startup() -> None:
        init_db(session_factory.kw["bind"])
        if settings.seed_default_group:
            seed_default_group(
                store,
                settings.default_group_name,
                settings.default_group_description,
                settings.default_group_avatar_url,
            )

    return app


app = create_app()
