import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

DEFAULT_ORIGINS = "http://localhost:8080,http://localhost:8081"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read once at startup."""
    database_url: str = "sqlite:///./data/quantum_pass.db"
    redis_url: str = "redis://localhost:6379/0"
    session_secret: str = "dev_secret_change_me"
    session_ttl_minutes: int = 60
    nonce_ttl_seconds: int = 300
    auth_rate_limit_per_min: int = 30
    idempotency_ttl_seconds: int = 300
    base_url: str = "http://localhost:4000"
    frontend_origins: Tuple[str, ...] = tuple(DEFAULT_ORIGINS.split(","))
    require_session_for_events: bool = False
    log_level: str = "INFO"

    def __post_init__(self):
        if self.nonce_ttl_seconds <= 0:
            raise ValueError("NONCE_TTL_SECONDS must be > 0")
        if self.session_ttl_minutes <= 0:
            raise ValueError("SESSION_TTL_MINUTES must be > 0")
        if self.auth_rate_limit_per_min <= 0:
            raise ValueError("AUTH_RATE_LIMIT_PER_MIN must be > 0")
        if self.idempotency_ttl_seconds <= 0:
            raise ValueError("IDEMPOTENCY_TTL_SECONDS must be > 0")


def _flag(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from environment variables.

    A ``.env`` file in the working directory is loaded first when reading
    the real process environment; pass ``env`` to bypass it entirely.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    origins = env.get("FRONTEND_ORIGIN", DEFAULT_ORIGINS)
    return Settings(
        database_url=env.get("DATABASE_URL", Settings.database_url),
        redis_url=env.get("REDIS_URL", Settings.redis_url),
        session_secret=env.get("SESSION_SECRET", Settings.session_secret),
        session_ttl_minutes=int(env.get("SESSION_TTL_MINUTES", Settings.session_ttl_minutes)),
        nonce_ttl_seconds=int(env.get("NONCE_TTL_SECONDS", Settings.nonce_ttl_seconds)),
        auth_rate_limit_per_min=int(env.get("AUTH_RATE_LIMIT_PER_MIN", Settings.auth_rate_limit_per_min)),
        idempotency_ttl_seconds=int(env.get("IDEMPOTENCY_TTL_SECONDS", Settings.idempotency_ttl_seconds)),
        base_url=env.get("BASE_URL", Settings.base_url).rstrip("/"),
        frontend_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        require_session_for_events=_flag(env.get("REQUIRE_SESSION_FOR_EVENTS", "false")),
        log_level=env.get("LOG_LEVEL", Settings.log_level).upper(),
    )
