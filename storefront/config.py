import logging
import os
import secrets
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def normalize_prefix(prefix: str) -> str:
    """'api/v1/' -> '/api/v1'; '' stays ''."""
    prefix = (prefix or "").strip()
    if prefix and not prefix.startswith("/"):
        prefix = "/" + prefix
    return prefix.rstrip("/")


def database_url_from_env() -> str:
    url = os.getenv("DATABASE_URL", "").strip()
    if url:
        return url
    user = os.getenv("DB_USER", "app")
    password = os.getenv("DB_PASS", "app")
    name = os.getenv("DB_NAME", "appdb")
    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    return f"postgresql+psycopg://{user}:{password}@{host}:{port}/{name}"


@dataclass
class Settings:
    database_url: str = "sqlite+pysqlite:///./storefront.db"
    db_schema: Optional[str] = None
    api_prefix: str = "/api/v1"
    admin_key: str = ""
    session_secret: str = field(default_factory=lambda: secrets.token_urlsafe(32))
    cookie_secure: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"
    listen_port: int = 4000

    @classmethod
    def from_env(cls) -> "Settings":
        session_secret = os.getenv("SESSION_SECRET", "").strip()
        if not session_secret:
            # sessions will not survive a restart
            logger.warning("SESSION_SECRET is not set; using a random per-process secret")
            session_secret = secrets.token_urlsafe(32)

        origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")
        return cls(
            database_url=database_url_from_env(),
            db_schema=os.getenv("DB_SCHEMA", "").strip() or None,
            api_prefix=normalize_prefix(os.getenv("API_PREFIX", "/api/v1")),
            admin_key=os.getenv("ADMIN_KEY", ""),
            session_secret=session_secret,
            cookie_secure=_truthy(os.getenv("COOKIE_SECURE")),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            listen_port=int(os.getenv("LISTEN_PORT", "4000")),
        )
