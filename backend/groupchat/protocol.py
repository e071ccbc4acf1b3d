"""WebSocket frame envelopes exchanged with the browser client."""

from __future__ import annotations

import json
from typing import Any, Dict, Type, Union

from pydantic import BaseModel, Field, ValidationError

from .errors import FrameError
from .schemas import CamelModel


class JoinRoomFrame(CamelModel):
    """Client -> server: subscribe this connection to one group's live feed."""

    group_id: int = Field(..., gt=0, strict=True)


class TypingFrame(CamelModel):
    """Client -> server: typing indicator for the room the connection is in."""

    group_id: int = Field(..., gt=0, strict=True)
    is_typing: bool = Field(..., strict=True)


ClientFrame = Union[JoinRoomFrame, TypingFrame]

INBOUND_FRAMES: Dict[str, Type[CamelModel]] = {
    "joinRoom": JoinRoomFrame,
    "join": JoinRoomFrame,
    "typing": TypingFrame,
}


class ServerFrame(BaseModel):
    """Server -> client envelope."""

    type: str
    data: Dict[str, Any] = {}


def parse_frame(raw: Union[str, bytes]) -> ClientFrame | None:
    """Decode one inbound frame.

    Returns None for well-formed frames of a type the server does not handle.
    Raises FrameError for anything that is not a JSON object with a string
    ``type`` or whose fields fail validation. The body may sit at the top
    level or inside ``payload``.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise FrameError("frame is not valid JSON") from exc
    if not isinstance(data, dict):
        raise FrameError("frame must be a JSON object")
    frame_type = data.get("type")
    if not isinstance(frame_type, str):
        raise FrameError("frame has no type")

    model = INBOUND_FRAMES.get(frame_type)
    if model is None:
        return None
    body = data["payload"] if isinstance(data.get("payload"), dict) else data
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        raise FrameError(f"invalid {frame_type} frame: {exc.error_count()} error(s)") from exc


def server_frame(frame_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    return ServerFrame(type=frame_type, data=data).model_dump(mode="json")
