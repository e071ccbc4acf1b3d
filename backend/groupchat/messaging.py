"""Message send/history path: membership check, persistence, then live fan-out."""

from __future__ import annotations

import logging
from typing import List

from fastapi.concurrency import run_in_threadpool

from .errors import Forbidden
from .protocol import server_frame
from .realtime import Dispatcher
from .schemas import MessageResponse, MessageSendRequest, MessageView
from .store import ChatStore

logger = logging.getLogger(__name__)


class MessageIngestion:
    def __init__(self, store: ChatStore, dispatcher: Dispatcher) -> None:
        self.store = store
        self.dispatcher = dispatcher

    async def require_member(self, group_id: int, user_id: str) -> None:
        if not await run_in_threadpool(self.store.is_member, group_id, user_id):
            raise Forbidden("Not a member of this group")

    async def send(self, group_id: int, sender_id: str, payload: MessageSendRequest) -> MessageResponse:
        """Store a message and announce it to the group's room.

        Nothing is broadcast unless the write committed. If the stored row
        cannot be read back with its sender the broadcast is skipped; clients
        pick the message up on their next history fetch.
        """
        await self.require_member(group_id, sender_id)
        message = await run_in_threadpool(
            self.store.create_message,
            group_id,
            sender_id,
            payload.content,
            payload.image_url,
        )
        full = await run_in_threadpool(self.store.get_message, message.id)
        if full is None:
            logger.warning("Message %s stored but could not be loaded with its sender; not broadcasting", message.id)
            return message
        delivered = await self.dispatcher.publish(
            group_id,
            server_frame("message", full.model_dump(mode="json", by_alias=True)),
        )
        logger.debug("Message %s delivered to %s connection(s) in room %s", message.id, delivered, group_id)
        return message

    async def history(self, group_id: int, user_id: str) -> List[MessageView]:
        await self.require_member(group_id, user_id)
        return await run_in_threadpool(self.store.group_messages, group_id)
