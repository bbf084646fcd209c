# fleetauth/security/csrf.py
"""
Per-session CSRF tokens.

Each session carries a random `csrf_secret` attribute. A token is
``<salt>.<mac>`` with mac = HMAC-SHA256(csrf_secret, salt), so any token
minted from the live session's secret verifies, for the whole session
lifetime, and a token from another session never does. A fresh salted
token is handed out on every response through a JS-readable cookie; the
client echoes it back in a header that a cross-origin page cannot set.
"""

import base64
import hashlib
import hmac
import logging
import secrets
from typing import Optional

from fleetauth.sessions.models import SessionRecord
from fleetauth.sessions.store import CSRF_SECRET_ATTRIBUTE

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def _mac(secret: str, salt: str) -> str:
    digest = hmac.new(secret.encode(), salt.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


class CsrfGuard:
    """Issues and verifies CSRF tokens bound to a session record."""

    def __init__(self, salt_bytes: int = 8):
        self.salt_bytes = salt_bytes

    @staticmethod
    def requires_check(method: str) -> bool:
        """Only state-changing methods are checked."""
        return method.upper() not in SAFE_METHODS

    def issue_token(self, session: SessionRecord) -> str:
        secret = self._secret(session)
        salt = secrets.token_urlsafe(self.salt_bytes)
        return f"{salt}.{_mac(secret, salt)}"

    def verify(self, session: SessionRecord, supplied_token: Optional[str]) -> bool:
        if not supplied_token:
            return False

        salt, sep, mac = supplied_token.partition(".")
        if not sep or not salt or not mac:
            return False

        try:
            secret = self._secret(session)
        except KeyError:
            return False
        return hmac.compare_digest(_mac(secret, salt), mac)

    @staticmethod
    def _secret(session: SessionRecord) -> str:
        return session.attributes[CSRF_SECRET_ATTRIBUTE]
