"""Shared session, CSRF and realtime auth fabric for a horizontally scaled service."""

__version__ = "1.0.0"
