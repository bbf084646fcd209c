# fleetauth/sessions/store.py
"""
Shared session store.

Session records live in Redis, never in process memory, because the fleet
member that loads a session is usually not the one that created it.

Key layout (prefix defaults to ``fleetauth:session:``):
  {prefix}{session_id}              -> SessionRecord JSON, TTL = remaining lifetime
  {prefix}identity:{identity_id}    -> set of session ids for that identity

The identity index lets account deletion tear down every session of the
identity, not just the one that issued the request. It can hold ids whose
record already expired; destroy() tolerates those.
"""

import logging
import secrets
from typing import Any, Dict, Optional

from pydantic import ValidationError

from fleetauth.core.exceptions import SessionNotFoundError
from fleetauth.core.logging_config import short_id
from fleetauth.services.redis_service import RedisService
from fleetauth.sessions.models import SessionRecord, utcnow

logger = logging.getLogger(__name__)

CSRF_SECRET_ATTRIBUTE = "csrf_secret"


class SessionStore:
    """
    Redis-backed session repository.

    Every method raises RedisServiceError (an UpstreamUnavailableError) when
    Redis is unreachable; callers must treat that as "cannot authenticate",
    never as "valid".
    """

    def __init__(self, redis_service: RedisService, ttl_seconds: int, key_prefix: str):
        self.redis = redis_service
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    def _identity_key(self, identity_id: int) -> str:
        return f"{self.key_prefix}identity:{identity_id}"

    async def create_session(self, identity_id: int,
                             attributes: Optional[Dict[str, Any]] = None) -> SessionRecord:
        """Create and persist a new session for an authenticated identity."""
        attributes = dict(attributes or {})
        attributes.setdefault(CSRF_SECRET_ATTRIBUTE, secrets.token_urlsafe(18))

        record = SessionRecord.start(identity_id, self.ttl_seconds, attributes)
        await self._save(record)
        await self.redis.add_to_set(self._identity_key(identity_id), record.session_id)
        await self.redis.expire(self._identity_key(identity_id), self.ttl_seconds)

        logger.info(f"🔐 Created session {short_id(record.session_id)} for identity {identity_id}")
        return record

    async def load(self, session_id: str) -> SessionRecord:
        """
        Load a session record.

        Raises:
            SessionNotFoundError: If no (parseable) record exists
            RedisServiceError: If Redis cannot be reached
        """
        raw = await self.redis.get(self._key(session_id), deserialize_json=False)
        if raw is None:
            raise SessionNotFoundError(session_id)

        try:
            return SessionRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Discarding unreadable session record {short_id(session_id)}")
            raise SessionNotFoundError(session_id)

    async def touch(self, session_id: str) -> SessionRecord:
        """
        Record activity on a session.

        The record is rewritten with its remaining lifetime as TTL; the absolute
        expiry is unchanged.
        """
        record = await self.load(session_id)
        now = utcnow()
        if record.is_expired(now):
            raise SessionNotFoundError(session_id)

        record = record.model_copy(update={"touched_at": now})
        if not await self._save(record, only_if_exists=True):
            # Destroyed between load and write; never resurrect it
            raise SessionNotFoundError(session_id)
        return record

    async def destroy(self, session_id: str) -> bool:
        """Remove a session. Returns True if a record was removed."""
        try:
            record = await self.load(session_id)
        except SessionNotFoundError:
            record = None

        removed = await self.redis.delete(self._key(session_id))
        if record is not None:
            await self.redis.remove_from_set(self._identity_key(record.identity_id), session_id)

        if removed:
            logger.info(f"🗑️ Destroyed session {short_id(session_id)}")
        return bool(removed)

    async def destroy_identity_sessions(self, identity_id: int) -> int:
        """Destroy every session of an identity. Returns how many records were removed."""
        index_key = self._identity_key(identity_id)
        session_ids = await self.redis.set_members(index_key)

        removed = 0
        if session_ids:
            removed = await self.redis.delete(*[self._key(sid) for sid in session_ids])
        await self.redis.delete(index_key)

        logger.info(f"🗑️ Destroyed {removed} session(s) for identity {identity_id}")
        return removed

    async def _save(self, record: SessionRecord, only_if_exists: bool = False) -> bool:
        ttl = record.remaining_seconds()
        if ttl <= 0:
            raise SessionNotFoundError(record.session_id)
        return await self.redis.set(
            self._key(record.session_id),
            record.model_dump_json(),
            ttl=ttl,
            only_if_exists=only_if_exists
        )
