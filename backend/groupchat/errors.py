"""Domain errors raised by the store, the ingestion path and the frame parser."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for chat service errors."""


class Forbidden(ChatError):
    """The caller is authenticated but not a member of the target group."""


class NotFound(ChatError):
    """The referenced group or message does not exist."""


class PersistenceFailure(ChatError):
    """A write to the database did not commit."""


class FrameError(ChatError):
    """An inbound WebSocket frame could not be decoded or validated."""
