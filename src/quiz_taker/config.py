"""Runtime settings read from the environment (and an optional .env file)."""
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_DB_PATH = str(Path.home() / ".quiz_taker" / "attempts.db")
DEFAULT_API_URL = "http://localhost:3000/api"


@dataclass
class Settings:
    api_url: str = DEFAULT_API_URL
    api_token: str | None = None
    db_path: str = DEFAULT_DB_PATH
    http_timeout: float = 10.0
    tick_interval: float = 1.0
    unload_timeout: float = 2.0
    network_retries: int = 1
    log_level: str = "WARNING"


def load_settings(env_file: str | None = None) -> Settings:
    load_dotenv(env_file)
    return Settings(
        api_url=os.getenv("QUIZ_API_URL", DEFAULT_API_URL).rstrip("/"),
        api_token=os.getenv("QUIZ_API_TOKEN") or None,
        db_path=os.getenv("QUIZ_DB_PATH", DEFAULT_DB_PATH),
        http_timeout=float(os.getenv("QUIZ_HTTP_TIMEOUT", "10")),
        tick_interval=float(os.getenv("QUIZ_TICK_INTERVAL", "1")),
        unload_timeout=float(os.getenv("QUIZ_UNLOAD_TIMEOUT", "2")),
        network_retries=int(os.getenv("QUIZ_NETWORK_RETRIES", "1")),
        log_level=os.getenv("QUIZ_LOG_LEVEL", "WARNING").upper(),
    )
