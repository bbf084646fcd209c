# fleetauth/core/config.py
import os
import secrets
import socket
import logging
from typing import List, Optional
from uuid import uuid4

from pydantic import Field
from pydantic_settings import BaseSettings

from fleetauth.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 32


def _default_fleet_member_id() -> str:
    return f"{socket.gethostname()}-{uuid4().hex[:6]}"


class Settings(BaseSettings):
    """Application settings, read from the environment or a .env file"""
    APP_NAME: str = "fleetauth"
    DEBUG: bool = False

    # Sessions
    SESSION_SECRET: Optional[str] = Field(default=None)
    SESSION_PREVIOUS_SECRETS: List[str] = Field(default_factory=list)
    SESSION_TTL_SECONDS: int = 48 * 3600
    SESSION_COOKIE_NAME: str = "sid"
    SESSION_KEY_PREFIX: str = "fleetauth:session:"
    SECURE_COOKIES: bool = False

    # CSRF
    CSRF_COOKIE_NAME: str = "XSRF-TOKEN"
    CSRF_HEADER_NAME: str = "X-XSRF-TOKEN"

    # Shared key-value store and pub/sub bus
    REDIS_URL: Optional[str] = Field(default=None)
    FANOUT_CHANNEL: str = "fleetauth:fanout"
    FANOUT_POLL_SECONDS: float = 1.0
    FLEET_MEMBER_ID: str = Field(default_factory=_default_fleet_member_id)

    # Relational store
    DATABASE_URL: str = "sqlite+aiosqlite:///./fleetauth.db"

    # Document store
    WEAVIATE_URL: Optional[str] = Field(default=None)
    WEAVIATE_API_KEY: Optional[str] = Field(default=None)
    DOCUMENT_COLLECTIONS: List[str] = Field(default_factory=lambda: ["ArticlesView"])
    DOCUMENT_OWNER_PROPERTY: str = "author_id"

    # Blob store
    BLOB_API_URL: str = "https://storage.googleapis.com"
    BLOB_PUBLIC_URL: str = "https://storage.googleapis.com"
    BLOB_BUCKET: str = "fleetauth-media"
    BLOB_PREFIX: str = "avatars"
    BLOB_API_TOKEN: Optional[str] = Field(default=None)
    MAX_PICTURE_BYTES: int = 5 * 1000 * 1000

    # Payments
    STRIPE_SECRET_KEY: Optional[str] = Field(default=None)

    # HTTP
    RATE_LIMIT_ENABLED: bool = True
    ALLOWED_ORIGINS: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }

    @property
    def session_secrets(self) -> List[str]:
        """Signing secret first, then the secrets still accepted for verification"""
        return [s for s in [self.SESSION_SECRET, *self.SESSION_PREVIOUS_SECRETS] if s]


def resolve_redis_url(settings: Settings) -> Optional[str]:
    """
    Return the configured Redis URL.

    Falls back through the provider-specific variables when REDIS_URL is unset.
    """
    if settings.REDIS_URL:
        return settings.REDIS_URL
    for var in ("REDIS_DIRECT_URI", "REDIS_DIRECT_URL", "REDIS_CLI_DIRECT_URI"):
        if url := os.environ.get(var):
            logger.info(f"Using Redis URL from {var}")
            return url
    return None


def validate_required_settings(settings: Settings) -> Settings:
    """
    Check the settings the fabric cannot run without.

    A missing SESSION_SECRET is tolerated only in DEBUG mode, where an
    ephemeral one is generated. Sessions signed with it do not survive a
    restart and are not valid on other fleet members.
    """
    if not settings.SESSION_SECRET:
        if not settings.DEBUG:
            raise ConfigurationError(
                "SESSION_SECRET must be set outside of DEBUG mode",
                component="sessions"
            )
        settings.SESSION_SECRET = secrets.token_urlsafe(48)
        logger.warning("⚠️ No SESSION_SECRET set. Generated an ephemeral secret for this process.")

    for secret in settings.session_secrets:
        if len(secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"Session secrets must be at least {MIN_SECRET_LENGTH} characters",
                component="sessions"
            )

    missing = []
    if not resolve_redis_url(settings):
        missing.append("REDIS_URL")
    if not settings.WEAVIATE_URL:
        missing.append("WEAVIATE_URL")
    if not settings.STRIPE_SECRET_KEY:
        missing.append("STRIPE_SECRET_KEY")

    if "REDIS_URL" in missing:
        raise ConfigurationError(
            "A shared Redis instance is required for sessions and fanout",
            component="redis"
        )
    if missing:
        logger.warning(f"Missing environment variables: {', '.join(missing)}")
        logger.warning("Dependent operations will fail until they are configured.")

    return settings


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings instance"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
