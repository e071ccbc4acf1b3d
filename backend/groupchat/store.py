"""Persistent group/membership/message repository backed by SQLAlchemy."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .database import SessionLocal
from .errors import NotFound, PersistenceFailure
from .models import GroupMemberModel, GroupModel, MessageModel, UserModel
from .schemas import GroupCreateRequest, GroupResponse, MemberView, MessageResponse, MessageView, UserView

logger = logging.getLogger(__name__)


def _message_view(message: MessageModel, sender: UserModel) -> MessageView:
    return MessageView(
        **MessageResponse.model_validate(message).model_dump(),
        sender=UserView.model_validate(sender),
    )


class ChatStore:
    """Groups, memberships and messages. Also answers membership questions for the realtime layer."""

    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    # Groups

    def create_group(self, payload: GroupCreateRequest, creator_id: str | None = None) -> GroupResponse:
        """Insert a group; when ``creator_id`` is given the creator becomes its admin in the same transaction."""
        with self._session() as db:
            group = GroupModel(
                name=payload.name,
                description=payload.description,
                avatar_url=payload.avatar_url,
            )
            try:
                db.add(group)
                db.flush()
                if creator_id is not None:
                    db.add(GroupMemberModel(group_id=group.id, user_id=creator_id, is_admin=True))
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception("Failed to create group %r", payload.name)
                raise PersistenceFailure("could not create group") from exc
            db.refresh(group)
            return GroupResponse.model_validate(group)

    def get_group(self, group_id: int) -> GroupResponse:
        with self._session() as db:
            group = db.get(GroupModel, group_id)
            if not group:
                raise NotFound(f"group {group_id}")
            return GroupResponse.model_validate(group)

    def list_groups(self) -> List[GroupResponse]:
        with self._session() as db:
            rows = db.scalars(select(GroupModel).order_by(GroupModel.id)).all()
            return [GroupResponse.model_validate(row) for row in rows]

    def user_groups(self, user_id: str) -> List[GroupResponse]:
        with self._session() as db:
            rows = db.scalars(
                select(GroupModel)
                .join(GroupMemberModel, GroupMemberModel.group_id == GroupModel.id)
                .where(GroupMemberModel.user_id == user_id)
                .order_by(GroupModel.id)
            ).all()
            return [GroupResponse.model_validate(row) for row in rows]

    # Memberships

    def add_member(self, group_id: int, user_id: str, is_admin: bool = False) -> bool:
        """Create the membership. Returns False when it already existed."""
        with self._session() as db:
            if not db.get(GroupModel, group_id):
                raise NotFound(f"group {group_id}")
            if self._membership(db, group_id, user_id) is not None:
                return False
            db.add(GroupMemberModel(group_id=group_id, user_id=user_id, is_admin=is_admin))
            try:
                db.commit()
            except IntegrityError:
                # lost a race with a concurrent join for the same pair
                db.rollback()
                return False
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception("Failed to add user %s to group %s", user_id, group_id)
                raise PersistenceFailure("could not add member") from exc
            return True

    def get_members(self, group_id: int) -> List[MemberView]:
        with self._session() as db:
            rows = db.execute(
                select(GroupMemberModel, UserModel)
                .join(UserModel, GroupMemberModel.user_id == UserModel.id)
                .where(GroupMemberModel.group_id == group_id)
                .order_by(GroupMemberModel.joined_at, GroupMemberModel.id)
            ).all()
            return [
                MemberView(
                    id=member.id,
                    group_id=member.group_id,
                    user_id=member.user_id,
                    is_admin=member.is_admin,
                    joined_at=member.joined_at,
                    user=UserView.model_validate(user),
                )
                for member, user in rows
            ]

    def is_member(self, group_id: int, user_id: str) -> bool:
        with self._session() as db:
            return self._membership(db, group_id, user_id) is not None

    @staticmethod
    def _membership(db: Session, group_id: int, user_id: str) -> Optional[GroupMemberModel]:
        return db.scalars(
            select(GroupMemberModel).where(
                GroupMemberModel.group_id == group_id,
                GroupMemberModel.user_id == user_id,
            )
        ).first()

    # Messages

    def create_message(
        self,
        group_id: int,
        sender_id: str,
        content: str,
        image_url: str | None = None,
    ) -> MessageResponse:
        with self._session() as db:
            message = MessageModel(
                group_id=group_id,
                sender_id=sender_id,
                content=content,
                image_url=image_url,
                created_at=datetime.now(timezone.utc),
            )
            try:
                db.add(message)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception("Failed to store message for group %s", group_id)
                raise PersistenceFailure("could not store message") from exc
            db.refresh(message)
            return MessageResponse.model_validate(message)

    def get_message(self, message_id: int) -> Optional[MessageView]:
        """Fetch one message joined with its sender, or None when the join finds nothing."""
        with self._session() as db:
            row = db.execute(
                select(MessageModel, UserModel)
                .join(UserModel, MessageModel.sender_id == UserModel.id)
                .where(MessageModel.id == message_id)
            ).first()
            if row is None:
                return None
            message, sender = row
            return _message_view(message, sender)

    def group_messages(self, group_id: int) -> List[MessageView]:
        with self._session() as db:
            rows = db.execute(
                select(MessageModel, UserModel)
                .join(UserModel, MessageModel.sender_id == UserModel.id)
                .where(MessageModel.group_id == group_id)
                .order_by(MessageModel.created_at, MessageModel.id)
            ).all()
            return [_message_view(message, sender) for message, sender in rows]


def seed_default_group(store: ChatStore, name: str, description: str, avatar_url: str | None) -> GroupResponse | None:
    if store.list_groups():
        return None
    group = store.create_group(GroupCreateRequest(name=name, description=description, avatar_url=avatar_url))
    logger.info("Seeded %r group", name)
    return group
