# fleetauth/sessions/codec.py
"""
Tamper-evident encoding of the session id carried in the session cookie.

Cookie value format: ``s:<session_id>.<signature>`` where the signature is
HMAC-SHA256(secret, session_id), base64url without padding. The session id
itself is random, so the signature only has to prove the cookie was issued by
a fleet member; it does not hide anything.

Secret rotation: the first secret signs, every configured secret verifies.
"""

import base64
import hashlib
import hmac
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)

COOKIE_PREFIX = "s:"


def _sign(secret: str, value: str) -> str:
    digest = hmac.new(secret.encode(), value.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


class SessionCodec:
    """Signs session ids into cookie values and verifies them back."""

    def __init__(self, secrets: List[str]):
        if not secrets:
            raise ValueError("SessionCodec needs at least one secret")
        self._secrets = list(secrets)

    def encode(self, session_id: str) -> str:
        return f"{COOKIE_PREFIX}{session_id}.{_sign(self._secrets[0], session_id)}"

    def decode(self, cookie_value: Optional[str]) -> Optional[str]:
        """Return the session id, or None if the value is missing, malformed or tampered with."""
        if not cookie_value or not cookie_value.startswith(COOKIE_PREFIX):
            return None

        session_id, sep, signature = cookie_value[len(COOKIE_PREFIX):].rpartition(".")
        if not sep or not session_id or not signature:
            return None

        for secret in self._secrets:
            if hmac.compare_digest(_sign(secret, session_id), signature):
                return session_id

        logger.warning(f"🔒 Rejected session cookie with bad signature for {session_id[:8]}...")
        return None
