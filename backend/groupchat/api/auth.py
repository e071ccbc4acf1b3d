"""Auth endpoints for email/password sign-in issuing bearer tokens."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import Settings
from ..models import UserModel
from ..schemas import (
    AuthFeatureResponse,
    AuthSignInRequest,
    AuthSignUpRequest,
    AuthTokenResponse,
    UserView,
)
from .deps import get_settings

router = APIRouter(prefix="/auth", tags=["auth"])
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def _ensure_enabled(settings: Settings) -> None:
    if not settings.auth_feature_enabled:
        raise HTTPException(status_code=503, detail="Auth is disabled.")


@router.get("/feature", response_model=AuthFeatureResponse)
def auth_feature(settings: Settings = Depends(get_settings)) -> AuthFeatureResponse:
    return AuthFeatureResponse(enabled=settings.auth_feature_enabled)


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        return False


def create_token(user: UserModel, settings: Settings) -> str:
    exp = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_exp_minutes)
    payload = {"sub": user.id, "email": user.email, "exp": exp}
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def decode_token(token: str, settings: Settings) -> str | None:
    """Return the user id carried by ``token``, or None when it does not verify."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    except jwt.PyJWTError:
        return None
    return payload.get("sub")


def get_current_user(
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> UserModel:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    token = authorization.split(" ", maxsplit=1)[1]
    user_id = decode_token(token, settings)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user = db.get(UserModel, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def _token_response(user: UserModel, settings: Settings) -> AuthTokenResponse:
    return AuthTokenResponse(token=create_token(user, settings), user=UserView.model_validate(user))


@router.post("/sign-in", response_model=AuthTokenResponse)
def sign_in(
    payload: AuthSignInRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> AuthTokenResponse:
    _ensure_enabled(settings)
    user = db.query(UserModel).filter(UserModel.email == payload.email.lower()).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    user.last_login_at = datetime.now(timezone.utc)
    db.add(user)
    db.commit()
    db.refresh(user)
    return _token_response(user, settings)


@router.post("/sign-up", response_model=AuthTokenResponse, status_code=status.HTTP_201_CREATED)
def sign_up(
    payload: AuthSignUpRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> AuthTokenResponse:
    _ensure_enabled(settings)
    email_normalized = payload.email.lower()
    existing = db.query(UserModel).filter(UserModel.email == email_normalized).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    user = UserModel(
        email=email_normalized,
        username=payload.username or email_normalized.split("@", maxsplit=1)[0],
        first_name=payload.first_name,
        last_name=payload.last_name,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return _token_response(user, settings)


@router.get("/user", response_model=UserView)
def current_user(current_user: UserModel = Depends(get_current_user)) -> UserView:
    return UserView.model_validate(current_user)
