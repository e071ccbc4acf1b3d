"""Request-scoped accessors for the objects the application factory builds."""

from __future__ import annotations

from fastapi import Request

from ..config import Settings
from ..messaging import MessageIngestion
from ..store import ChatStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> ChatStore:
    return request.app.state.store


def get_ingestion(request: Request) -> MessageIngestion:
    return request.app.state.ingestion
