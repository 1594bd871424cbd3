"""
PocketTavern settings, read from POCKETTAVERN_* environment variables or .env
"""
from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 7413
    debug: bool = False
    cors_origins: list[str] = ["*"]

    # Characters, lorebooks, chats, settings.json, logs and the request log DB
    data_dir: Path = Path("data")

    # SillyTavern-compatible server that proxies the actual model backends
    backend_url: str = "http://127.0.0.1:8000"
    connect_timeout: float = 10.0
    read_timeout: float = 300.0

    # Record every generate call in the request_logs table
    log_requests: bool = True

    class Config:
        env_prefix = "POCKETTAVERN_"
        env_file = ".env"


settings = Settings()

for subdir in ("characters", "worldbooks", "chats"):
    (settings.data_dir / subdir).mkdir(parents=True, exist_ok=True)
