# fleetauth/realtime/registry.py
"""
Local registry of realtime connections on this fleet member.

Connections are indexed by id, by identity and by room so the fanout relay
can route an event without scanning every socket. Nothing here is shared
with other fleet members; cross-member delivery goes through the relay.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from fleetauth.core.logging_config import short_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionBinding:
    """Association of one accepted socket with the identity that opened it."""
    connection_id: str
    identity_id: int
    fleet_member_id: str
    opened_at: datetime


@dataclass
class _Entry:
    binding: ConnectionBinding
    websocket: Any
    rooms: Set[str]


class ConnectionRegistry:
    """
    Tracks open sockets and delivers payloads to them.

    Delivery is at-most-once: a send that fails drops the connection and is
    not retried.
    """

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}
        self._by_identity: Dict[int, Set[str]] = {}
        self._by_room: Dict[str, Set[str]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, binding: ConnectionBinding, websocket: Any) -> None:
        self._entries[binding.connection_id] = _Entry(binding=binding, websocket=websocket, rooms=set())
        self._by_identity.setdefault(binding.identity_id, set()).add(binding.connection_id)
        logger.info(
            f"🔌 Registered connection {short_id(binding.connection_id)} "
            f"for identity {binding.identity_id} ({len(self._entries)} open)"
        )

    def unregister(self, connection_id: str) -> Optional[ConnectionBinding]:
        entry = self._entries.pop(connection_id, None)
        if entry is None:
            return None

        identity_id = entry.binding.identity_id
        self._by_identity.get(identity_id, set()).discard(connection_id)
        if not self._by_identity.get(identity_id):
            self._by_identity.pop(identity_id, None)

        for room in entry.rooms:
            members = self._by_room.get(room)
            if members is not None:
                members.discard(connection_id)
                if not members:
                    del self._by_room[room]

        logger.info(f"🔌 Unregistered connection {short_id(connection_id)} ({len(self._entries)} open)")
        return entry.binding

    def join(self, connection_id: str, room: str) -> bool:
        entry = self._entries.get(connection_id)
        if entry is None:
            return False
        entry.rooms.add(room)
        self._by_room.setdefault(room, set()).add(connection_id)
        return True

    def leave(self, connection_id: str, room: str) -> bool:
        entry = self._entries.get(connection_id)
        if entry is None or room not in entry.rooms:
            return False
        entry.rooms.discard(room)
        members = self._by_room.get(room, set())
        members.discard(connection_id)
        if not members:
            self._by_room.pop(room, None)
        return True

    def bindings_for_identity(self, identity_id: int) -> List[ConnectionBinding]:
        return [self._entries[cid].binding for cid in self._by_identity.get(identity_id, ())]

    def rooms_of(self, connection_id: str) -> Set[str]:
        entry = self._entries.get(connection_id)
        return set(entry.rooms) if entry else set()

    async def send_to_identity(self, identity_id: int, payload: Dict[str, Any]) -> int:
        """Send to every local connection of an identity. Returns deliveries."""
        return await self._send_many(list(self._by_identity.get(identity_id, ())), payload)

    async def send_to_room(self, room: str, payload: Dict[str, Any]) -> int:
        return await self._send_many(list(self._by_room.get(room, ())), payload)

    async def close_identity(self, identity_id: int, code: int, reason: str = "") -> int:
        """Close and unregister every local connection of an identity."""
        closed = 0
        for connection_id in list(self._by_identity.get(identity_id, ())):
            entry = self._entries.get(connection_id)
            self.unregister(connection_id)
            if entry is None:
                continue
            try:
                await entry.websocket.close(code=code, reason=reason)
            except Exception as e:
                logger.debug(f"Close of {short_id(connection_id)} failed: {e}")
            closed += 1

        if closed:
            logger.info(f"🚪 Closed {closed} connection(s) of identity {identity_id} ({reason or code})")
        return closed

    async def close_all(self, code: int = 1001) -> None:
        for connection_id in list(self._entries):
            entry = self._entries.get(connection_id)
            self.unregister(connection_id)
            try:
                await entry.websocket.close(code=code)
            except Exception as e:
                logger.debug(f"Close of {short_id(connection_id)} failed: {e}")

    async def _send_many(self, connection_ids: List[str], payload: Dict[str, Any]) -> int:
        delivered = 0
        for connection_id in connection_ids:
            entry = self._entries.get(connection_id)
            if entry is None:
                continue
            try:
                await entry.websocket.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"⚠️ Dropping connection {short_id(connection_id)} after failed send: {e}")
                self.unregister(connection_id)
        return delivered
