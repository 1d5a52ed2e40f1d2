from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./fieldsync.db"
    api_base_url: str = "http://localhost:8000"
    api_token: str = ""
    org_id: str = ""  # sent as x-org-id when set
    request_timeout_seconds: float = 30.0
    sync_batch_limit: int = 25
    sync_interval_minutes: int = 5
    claim_ttl_seconds: int = 300
    replay_window: int = 5000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "FIELDSYNC_"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
