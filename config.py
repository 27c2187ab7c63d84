import logging
import os
from typing import List, Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv


class ConfigError(Exception):
    """Raised when the environment does not describe a usable deployment."""


class Settings:
    def __init__(
        self,
        database_url: str,
        database_name: str = "resort_booking",
        port: int = 8000,
        cors_origins: Optional[List[str]] = None,
    ):
        self.database_url = database_url
        self.database_name = database_name
        self.port = port
        self.cors_origins = cors_origins or ["*"]


def build_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    user = os.getenv("DB_USER")
    password = os.getenv("DB_PASS")
    cluster = os.getenv("DB_CLUSTER")
    if not (user and password and cluster):
        raise ConfigError(
            "Set DATABASE_URL, or DB_USER, DB_PASS and DB_CLUSTER, to reach the database"
        )
    return (
        f"mongodb+srv://{quote_plus(user)}:{quote_plus(password)}@{cluster}/"
        "?retryWrites=true&w=majority"
    )


def get_cors_origins() -> List[str]:
    return [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def load_settings() -> Settings:
    load_dotenv()
    return Settings(
        database_url=build_database_url(),
        database_name=os.getenv("DATABASE_NAME", "resort_booking"),
        port=int(os.getenv("PORT", 8000)),
        cors_origins=get_cors_origins(),
    )


def configure_logging(level: Optional[str] = None):
    load_dotenv()
    logging.basicConfig(
        level=level or get_log_level(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
