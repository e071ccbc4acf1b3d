"""User metadata endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..api.auth import get_current_user
from ..models import UserModel
from ..schemas import UserView

router = APIRouter(prefix="/me", tags=["users"])


@router.get("", response_model=UserView)
def get_me(current_user: UserModel = Depends(get_current_user)) -> UserView:
    return UserView.model_validate(current_user)
