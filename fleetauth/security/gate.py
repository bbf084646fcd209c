# fleetauth/security/gate.py
"""
Auth Gate: resolves a session cookie to an authenticated identity.

Used by both the HTTP pipeline and the realtime bridge, so a cookie that is
valid for one is valid for the other and nothing else.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from fleetauth.core.exceptions import SessionNotFoundError
from fleetauth.core.logging_config import short_id
from fleetauth.models.identity import Identity
from fleetauth.services.identity_repository import IdentityRepository
from fleetauth.sessions.codec import SessionCodec
from fleetauth.sessions.models import SessionRecord, utcnow
from fleetauth.sessions.store import SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthResult:
    session: SessionRecord
    identity: Identity


class AuthGate:
    """
    Turns cookie values into sessions and back.

    authenticate() never raises for a bad cookie: missing, tampered, expired
    and orphaned sessions all come back as None (anonymous). It only raises
    when a backend is unreachable, so an outage can never pass as a login.
    """

    def __init__(self, codec: SessionCodec, store: SessionStore, identities: IdentityRepository):
        self.codec = codec
        self.store = store
        self.identities = identities

    async def authenticate(self, cookie_value: Optional[str]) -> Optional[AuthResult]:
        """
        Resolve a session cookie value.

        Raises:
            UpstreamUnavailableError: If the session or relational store is down
        """
        session_id = self.codec.decode(cookie_value)
        if session_id is None:
            return None

        try:
            session = await self.store.touch(session_id)
        except SessionNotFoundError:
            logger.debug(f"Session {short_id(session_id)} not found")
            return None

        # Redis expiry is coarse; the record's own timestamp is authoritative
        if session.is_expired(utcnow()):
            logger.info(f"⏰ Rejected expired session {short_id(session_id)}")
            return None

        identity = await self.identities.get(session.identity_id)
        if identity is None:
            logger.warning(
                f"👻 Session {short_id(session_id)} references missing identity {session.identity_id}"
            )
            return None

        return AuthResult(session=session, identity=identity)

    async def login(self, identity_id: int) -> Tuple[SessionRecord, str]:
        """Start a session for an identity verified elsewhere; returns the record and cookie value."""
        session = await self.store.create_session(identity_id)
        return session, self.codec.encode(session.session_id)

    async def logout(self, session: SessionRecord) -> None:
        await self.store.destroy(session.session_id)
        logger.info(f"👋 Identity {session.identity_id} logged out")
