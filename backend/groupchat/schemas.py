"""Pydantic schemas for the chat API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for models exchanged with the browser client, which speaks camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UserView(CamelModel):
    id: str
    email: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None


class GroupCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(None, max_length=1000)
    avatar_url: Optional[str] = None


class GroupResponse(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime


class MemberView(CamelModel):
    id: int
    group_id: int
    user_id: str
    is_admin: bool
    joined_at: datetime
    user: UserView


class GroupDetailResponse(GroupResponse):
    members: list[MemberView] = []


class JoinGroupResponse(BaseModel):
    message: str


class MessageSendRequest(CamelModel):
    content: str
    image_url: Optional[str] = None


class MessageResponse(CamelModel):
    id: int
    group_id: int
    sender_id: str
    content: str
    image_url: Optional[str] = None
    created_at: datetime


class MessageView(MessageResponse):
    sender: UserView


class AuthFeatureResponse(BaseModel):
    enabled: bool


class AuthSignInRequest(BaseModel):
    email: EmailStr
    password: str


class AuthSignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    username: Optional[str] = Field(None, min_length=1, max_length=64)
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class AuthTokenResponse(BaseModel):
    token: str
    user: UserView
