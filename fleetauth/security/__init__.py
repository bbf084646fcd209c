"""
Security layer.

Centralizes request authentication:
- Auth Gate resolving session cookies to identities
- CSRF token issuance and verification
- The ordered request pipeline and its middleware

Route handlers only read the resulting RequestContext.
"""

from .csrf import CsrfGuard
from .gate import AuthGate, AuthResult
from .pipeline import (
    AuthMiddleware,
    AuthPipeline,
    Continue,
    CsrfStage,
    Reject,
    RequestContext,
    SessionStage,
)

__all__ = [
    'AuthGate',
    'AuthMiddleware',
    'AuthPipeline',
    'AuthResult',
    'Continue',
    'CsrfGuard',
    'CsrfStage',
    'Reject',
    'RequestContext',
    'SessionStage',
]
