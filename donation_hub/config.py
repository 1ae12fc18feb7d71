"""Runtime configuration read from the environment."""
import os
from typing import NamedTuple


class Settings(NamedTuple):
    database_url: str
    jwt_secret: str
    jwt_exp_seconds: int
    log_level: str
    log_format: str
    default_page_size: int
    max_page_size: int


def _load() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./donation_hub.db"),
        jwt_secret=os.getenv("JWT_SECRET", "dev-secret"),
        jwt_exp_seconds=int(os.getenv("JWT_EXP_SECONDS", str(60 * 60 * 24))),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_format=os.getenv("LOG_FORMAT", "readable"),
        default_page_size=int(os.getenv("DEFAULT_PAGE_SIZE", "10")),
        max_page_size=int(os.getenv("MAX_PAGE_SIZE", "100")),
    )


state = _load()


def reload_settings() -> Settings:
    global state
    state = _load()
    return state


def get_settings() -> Settings:
    return state
