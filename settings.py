# settings.py
"""
Relay Settings
==============

All configuration is read from environment variables, with a `.env` file
loaded first for local development. One frozen `Settings` instance is shared
by the whole process through `get_settings()`.

VOLATILE STORE (Redis):
- REDIS_URL, CACHE_BACKEND ("redis" or "memory")
- USER_CACHE_TTL_SECONDS, SESSION_TTL_SECONDS, SESSION_ATOMIC_APPEND

DURABLE STORE (PostgreSQL):
- PG_HOST, PG_PORT, PG_DATABASE, PG_USER, PG_PASSWORD, PG_POOL_MAX

OUTBOUND / SECURITY:
- N8N_WEBHOOK_URL, NOTIFY_TIMEOUT_SECONDS, API_KEY, OPENAI_API_KEY
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"true", "1", "yes", "on"}


def _env_optional(name: str) -> Optional[str]:
    raw = (os.getenv(name) or "").strip()
    return raw or None


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables."""

    # HTTP server
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "3000")))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Volatile store
    redis_url: str = field(default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379"))
    cache_backend: str = field(default_factory=lambda: os.getenv("CACHE_BACKEND", "redis").lower())
    user_cache_ttl_seconds: int = field(
        default_factory=lambda: int(os.getenv("USER_CACHE_TTL_SECONDS", "300"))
    )
    session_ttl_seconds: int = field(
        default_factory=lambda: int(os.getenv("SESSION_TTL_SECONDS", str(60 * 60 * 12)))
    )
    session_atomic_append: bool = field(
        default_factory=lambda: _env_bool("SESSION_ATOMIC_APPEND")
    )

    # Durable store
    pg_host: str = field(default_factory=lambda: os.getenv("PG_HOST", "localhost"))
    pg_port: int = field(default_factory=lambda: int(os.getenv("PG_PORT", "5432")))
    pg_database: str = field(default_factory=lambda: os.getenv("PG_DATABASE", "relay_memory"))
    pg_user: str = field(default_factory=lambda: os.getenv("PG_USER", "postgres"))
    pg_password: str = field(default_factory=lambda: os.getenv("PG_PASSWORD", ""))
    pg_pool_max: int = field(default_factory=lambda: int(os.getenv("PG_POOL_MAX", "10")))

    # Outbound automation workflow (n8n or similar)
    automation_webhook_url: Optional[str] = field(
        default_factory=lambda: _env_optional("N8N_WEBHOOK_URL")
    )
    notify_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "10"))
    )

    # Security / model provider
    api_key: Optional[str] = field(default_factory=lambda: _env_optional("API_KEY"))
    openai_api_key: Optional[str] = field(default_factory=lambda: _env_optional("OPENAI_API_KEY"))

    @property
    def pg_config(self) -> Dict[str, Any]:
        """Keyword arguments for psycopg2.connect()."""
        return {
            "host": self.pg_host,
            "port": self.pg_port,
            "database": self.pg_database,
            "user": self.pg_user,
            "password": self.pg_password,
        }

    @property
    def use_memory_cache(self) -> bool:
        return self.cache_backend == "memory"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
