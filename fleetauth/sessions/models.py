# fleetauth/sessions/models.py

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    """24 random bytes, URL-safe; unguessable and never derived from the identity"""
    return secrets.token_urlsafe(24)


class SessionRecord(BaseModel):
    """
    Server-side authentication state for one client.

    Stored as JSON in the shared Redis instance so every fleet member can load
    it. `expires_at` is absolute: touching a session never pushes it back.
    """
    session_id: str = Field(default_factory=new_session_id)
    identity_id: int
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    touched_at: Optional[datetime] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def start(cls, identity_id: int, ttl_seconds: int,
              attributes: Optional[Dict[str, Any]] = None) -> "SessionRecord":
        now = utcnow()
        return cls(
            identity_id=identity_id,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
            attributes=attributes or {}
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def remaining_seconds(self, now: Optional[datetime] = None) -> int:
        return max(0, int((self.expires_at - (now or utcnow())).total_seconds()))
