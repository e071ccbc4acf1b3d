"""Group and membership endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path, status

from ..errors import NotFound, PersistenceFailure
from ..models import UserModel
from ..schemas import GroupCreateRequest, GroupDetailResponse, GroupResponse, JoinGroupResponse
from ..store import ChatStore
from .auth import get_current_user
from .deps import get_store

router = APIRouter(prefix="/groups", tags=["groups"])


@router.get("", response_model=list[GroupResponse])
def list_groups(
    current_user: UserModel = Depends(get_current_user),
    store: ChatStore = Depends(get_store),
) -> list[GroupResponse]:
    return store.user_groups(current_user.id)


@router.post("", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
def create_group(
    payload: GroupCreateRequest,
    current_user: UserModel = Depends(get_current_user),
    store: ChatStore = Depends(get_store),
) -> GroupResponse:
    try:
        return store.create_group(payload, creator_id=current_user.id)
    except PersistenceFailure as exc:
        raise HTTPException(status_code=500, detail="Could not create group") from exc


@router.get("/{group_id}", response_model=GroupDetailResponse)
def get_group(
    group_id: int = Path(..., description="Group identifier"),
    current_user: UserModel = Depends(get_current_user),
    store: ChatStore = Depends(get_store),
) -> GroupDetailResponse:
    try:
        group = store.get_group(group_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail="Group not found") from exc
    return GroupDetailResponse(**group.model_dump(), members=store.get_members(group_id))


@router.post("/{group_id}/join", response_model=JoinGroupResponse)
def join_group(
    group_id: int = Path(..., description="Group identifier"),
    current_user: UserModel = Depends(get_current_user),
    store: ChatStore = Depends(get_store),
) -> JoinGroupResponse:
    try:
        created = store.add_member(group_id, current_user.id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail="Group not found") from exc
    except PersistenceFailure as exc:
        raise HTTPException(status_code=500, detail="Could not join group") from exc
    return JoinGroupResponse(message="Joined group" if created else "Already a member")
