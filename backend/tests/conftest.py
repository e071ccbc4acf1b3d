import json
import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from groupchat.api.auth import create_token
from groupchat.config import Settings
from groupchat.database import build_engine, build_session_factory, init_db
from groupchat.main import create_app
from groupchat.models import UserModel
from groupchat.store import ChatStore


class FakeChannel:
    """Stands in for a Starlette WebSocket in realtime unit tests."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict] = []
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("broken pipe")
        self.sent.append(json.loads(data))

    def hang_up(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED


class FakeDispatcher:
    def __init__(self) -> None:
        self.published: list[tuple[int, dict]] = []

    async def publish(self, room_id: int, payload: dict) -> int:
        self.published.append((room_id, payload))
        return 1


def wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory) -> ChatStore:
    return ChatStore(session_factory)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        jwt_secret="test-secret-for-the-chat-suite-0123456789",
        seed_default_group=False,
        ws_require_membership=False,
    )


@pytest.fixture
def app(settings, session_factory):
    return create_app(settings, session_factory)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(session_factory):
    def _make(email: str, username: str | None = None) -> UserModel:
        with session_factory() as db:
            user = UserModel(
                email=email,
                username=username or email.split("@")[0],
                password_hash="not-a-real-hash",
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            return user

    return _make


@pytest.fixture
def auth_headers(settings):
    def _headers(user: UserModel) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_token(user, settings)}"}

    return _headers
