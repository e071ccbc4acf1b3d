"""Room-based fan-out of chat events to live WebSocket connections."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, DefaultDict, Dict, FrozenSet, Optional, Protocol, Set, Union
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from .errors import FrameError
from .protocol import JoinRoomFrame, TypingFrame, parse_frame, server_frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Unjoined:
    pass


@dataclass(frozen=True)
class JoinedRoom:
    room_id: int


@dataclass(frozen=True)
class Closed:
    pass


ConnectionState = Union[Unjoined, JoinedRoom, Closed]


class Channel(Protocol):
    client_state: WebSocketState
    application_state: WebSocketState

    async def send_text(self, data: str) -> None: ...


class Connection:
    """One live peer. Its state is only ever changed by the RoomDirectory."""

    def __init__(self, channel: Channel, user_id: str | None = None) -> None:
        self.id = uuid4().hex
        self.channel = channel
        self.user_id = user_id
        self.state: ConnectionState = Unjoined()

    @property
    def room_id(self) -> Optional[int]:
        if isinstance(self.state, JoinedRoom):
            return self.state.room_id
        return None

    @property
    def is_open(self) -> bool:
        if isinstance(self.state, Closed):
            return False
        return (
            self.channel.client_state == WebSocketState.CONNECTED
            and self.channel.application_state == WebSocketState.CONNECTED
        )

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id!r}, state={self.state!r})"


class RoomDirectory:
    """Maps group ids to the connections currently subscribed to them.

    A connection sits in at most one room. Every mutation and snapshot runs
    under one lock, so a broadcast iterating a snapshot never observes a
    half-applied join or leave.
    """

    def __init__(self) -> None:
        self._rooms: DefaultDict[int, Set[Connection]] = defaultdict(set)
        self._lock = threading.RLock()

    def join(self, room_id: int, connection: Connection) -> bool:
        with self._lock:
            if isinstance(connection.state, Closed):
                return False
            previous = connection.room_id
            if previous == room_id:
                return True
            if previous is not None:
                self._discard(previous, connection)
            self._rooms[room_id].add(connection)
            connection.state = JoinedRoom(room_id)
            return True

    def leave(self, room_id: int, connection: Connection) -> None:
        with self._lock:
            if connection.room_id != room_id:
                return
            self._discard(room_id, connection)
            connection.state = Unjoined()

    def drop(self, connection: Connection) -> None:
        """Remove the connection from its room and mark it closed for good."""
        with self._lock:
            room_id = connection.room_id
            if room_id is not None:
                self._discard(room_id, connection)
            connection.state = Closed()

    def members_of(self, room_id: int) -> FrozenSet[Connection]:
        with self._lock:
            return frozenset(self._rooms.get(room_id, ()))

    def room_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._rooms)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def _discard(self, room_id: int, connection: Connection) -> None:
        members = self._rooms.get(room_id)
        if members is None:
            return
        members.discard(connection)
        if not members:
            self._rooms.pop(room_id, None)


class ConnectionRegistry:
    """Owns every live Connection for as long as its channel is open."""

    def __init__(self, directory: RoomDirectory) -> None:
        self.directory = directory
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.RLock()

    def register(self, channel: Channel, user_id: str | None = None) -> Connection:
        connection = Connection(channel, user_id=user_id)
        with self._lock:
            self._connections[connection.id] = connection
        return connection

    def unregister(self, connection: Connection) -> None:
        with self._lock:
            self.directory.drop(connection)
            self._connections.pop(connection.id, None)

    def current_room(self, connection: Connection) -> Optional[int]:
        return connection.room_id

    def __contains__(self, connection: object) -> bool:
        with self._lock:
            return isinstance(connection, Connection) and connection.id in self._connections

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)


class Dispatcher(Protocol):
    async def publish(self, room_id: int, payload: Dict[str, Any]) -> int: ...


class BroadcastDispatcher:
    def __init__(self, directory: RoomDirectory) -> None:
        self.directory = directory

    async def publish(
        self,
        room_id: int,
        payload: Dict[str, Any],
        exclude: Connection | None = None,
    ) -> int:
        """Send ``payload`` to every open member of the room; returns how many writes succeeded.

        Delivery is best-effort and at most once per connection. A failed
        write only drops that connection from the room.
        """
        targets = [
            connection
            for connection in self.directory.members_of(room_id)
            if connection.is_open and connection is not exclude
        ]
        if not targets:
            return 0
        text = json.dumps(payload)
        results = await asyncio.gather(*(self._deliver(room_id, connection, text) for connection in targets))
        return sum(results)

    async def _deliver(self, room_id: int, connection: Connection, text: str) -> bool:
        try:
            await connection.channel.send_text(text)
        except Exception as exc:
            logger.info("Dropping connection %s from room %s after failed send: %s", connection.id, room_id, exc)
            self.directory.leave(room_id, connection)
            return False
        return True


JoinGuard = Callable[[Connection, int], Awaitable[bool]]


class RoomProtocol:
    """Runs the join/typing frame protocol for each accepted WebSocket."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        dispatcher: BroadcastDispatcher,
        join_guard: JoinGuard | None = None,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self.join_guard = join_guard

    async def serve(self, websocket: WebSocket, user_id: str | None = None) -> None:
        await websocket.accept()
        connection = self.registry.register(websocket, user_id=user_id)
        logger.info("Connection %s opened (user=%s)", connection.id, user_id)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                await self.handle_frame(connection, raw)
        except WebSocketDisconnect:
            pass
        finally:
            self.registry.unregister(connection)
            logger.info("Connection %s closed", connection.id)

    async def handle_frame(self, connection: Connection, raw: Union[str, bytes, None]) -> None:
        try:
            frame = parse_frame(raw)
        except FrameError as exc:
            logger.warning("Ignoring malformed frame on connection %s: %s", connection.id, exc)
            return
        if frame is None:
            return
        if isinstance(frame, JoinRoomFrame):
            await self._join(connection, frame.group_id)
        elif isinstance(frame, TypingFrame):
            await self._typing(connection, frame)

    async def _join(self, connection: Connection, room_id: int) -> None:
        if self.join_guard is not None:
            try:
                allowed = await self.join_guard(connection, room_id)
            except Exception:
                logger.exception("Join check for room %s failed on connection %s", room_id, connection.id)
                allowed = False
            if not allowed:
                logger.info("Refused room %s for connection %s", room_id, connection.id)
                return
        previous = connection.room_id
        if self.registry.directory.join(room_id, connection) and previous != room_id:
            logger.info("Connection %s moved from room %s to room %s", connection.id, previous, room_id)

    async def _typing(self, connection: Connection, frame: TypingFrame) -> None:
        if connection.user_id is None or connection.room_id != frame.group_id:
            return
        await self.dispatcher.publish(
            frame.group_id,
            server_frame(
                "typing",
                {"groupId": frame.group_id, "userId": connection.user_id, "isTyping": frame.is_typing},
            ),
            exclude=connection,
        )
