"""Application configuration via environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    api_prefix: str = "/api"
    project_name: str = "Group Chat API"
    allow_origins: list[str] = ["http://localhost:5173", "http://localhost:5000"]
    database_url: str = f"sqlite:///{BASE_DIR.parent / 'groupchat.db'}"
    websocket_path: str = "/ws"
    jwt_secret: str = "change-me-in-production-please-0123456789"
    jwt_exp_minutes: int = 60 * 24 * 7
    auth_feature_enabled: bool = True
    seed_default_group: bool = True
    default_group_name: str = "General Chat"
    default_group_description: str = "A place for everyone to chat"
    default_group_avatar_url: str = "https://api.dicebear.com/7.x/initials/svg?seed=GC"
    ws_require_membership: bool = False
    log_level: str = "INFO"


settings = Settings()
