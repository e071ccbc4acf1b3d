"""Group message history and send endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path, Request, status
from pydantic import ValidationError

from ..errors import Forbidden, PersistenceFailure
from ..messaging import MessageIngestion
from ..models import UserModel
from ..schemas import MessageResponse, MessageSendRequest, MessageView
from .auth import get_current_user
from .deps import get_ingestion

router = APIRouter(prefix="/groups/{group_id}/messages", tags=["messages"])


@router.get("", response_model=list[MessageView])
async def list_messages(
    group_id: int = Path(..., description="Group identifier"),
    current_user: UserModel = Depends(get_current_user),
    ingestion: MessageIngestion = Depends(get_ingestion),
) -> list[MessageView]:
    try:
        return await ingestion.history(group_id, current_user.id)
    except Forbidden as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    request: Request,
    group_id: int = Path(..., description="Group identifier"),
    current_user: UserModel = Depends(get_current_user),
    ingestion: MessageIngestion = Depends(get_ingestion),
) -> MessageResponse:
    try:
        await ingestion.require_member(group_id, current_user.id)
    except Forbidden as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        payload = MessageSendRequest.model_validate(await request.json())
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid input") from exc

    try:
        return await ingestion.send(group_id, current_user.id, payload)
    except Forbidden as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except PersistenceFailure as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not store message") from exc
