"""Realtime connections: handshake authentication, local registry, fleet-wide fanout."""

from .bridge import RealtimeBridge
from .registry import ConnectionBinding, ConnectionRegistry
from .relay import FanoutEvent, FanoutRelay

__all__ = [
    'ConnectionBinding',
    'ConnectionRegistry',
    'FanoutEvent',
    'FanoutRelay',
    'RealtimeBridge',
]
