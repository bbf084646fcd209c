# fleetauth/realtime/bridge.py
"""
Realtime Auth Bridge.

Authenticates a websocket at handshake time with the same AuthGate the HTTP
pipeline uses, binds the accepted socket to its identity and serves the
small client protocol:

    {"type": "join",  "room": "..."}   -> {"type": "joined", "room": "..."}
    {"type": "leave", "room": "..."}   -> {"type": "left", "room": "..."}
    {"type": "ping"}                   -> {"type": "pong"}

The session is not re-checked after the handshake; revocation reaches open
sockets through a force-close event on the fanout relay.
"""

import json
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect

from fleetauth.core.exceptions import UpstreamUnavailableError
from fleetauth.core.logging_config import short_id
from fleetauth.realtime.registry import ConnectionBinding, ConnectionRegistry
from fleetauth.security.gate import AuthGate
from fleetauth.sessions.models import utcnow

logger = logging.getLogger(__name__)

UNAUTHENTICATED_CODE = 4401
TRY_AGAIN_LATER_CODE = 1013
MAX_ROOM_LENGTH = 128


class RealtimeBridge:
    """Handshake authentication and message loop for one websocket at a time."""

    def __init__(self, gate: AuthGate, registry: ConnectionRegistry, cookie_name: str, fleet_member_id: str):
        self.gate = gate
        self.registry = registry
        self.cookie_name = cookie_name
        self.fleet_member_id = fleet_member_id

    async def authenticate_handshake(self, websocket: WebSocket) -> Optional[ConnectionBinding]:
        """
        Authenticate the upgrade request.

        On failure the socket is closed before accept() and None is returned.
        """
        try:
            result = await self.gate.authenticate(websocket.cookies.get(self.cookie_name))
        except UpstreamUnavailableError as e:
            logger.error(f"❌ Websocket handshake refused, session store unavailable: {e}")
            await websocket.close(code=TRY_AGAIN_LATER_CODE)
            return None

        if result is None:
            logger.info("🔒 Websocket handshake rejected: no valid session")
            await websocket.close(code=UNAUTHENTICATED_CODE)
            return None

        await websocket.accept()
        return ConnectionBinding(
            connection_id=uuid4().hex,
            identity_id=result.identity.id,
            fleet_member_id=self.fleet_member_id,
            opened_at=utcnow(),
        )

    async def handle(self, websocket: WebSocket) -> None:
        binding = await self.authenticate_handshake(websocket)
        if binding is None:
            return

        self.registry.register(binding, websocket)
        try:
            while True:
                text = await websocket.receive_text()
                reply = self.handle_message(binding, text)
                if reply is not None:
                    await websocket.send_json(reply)
        except WebSocketDisconnect:
            logger.debug(f"Connection {short_id(binding.connection_id)} disconnected")
        finally:
            self.registry.unregister(binding.connection_id)

    def handle_message(self, binding: ConnectionBinding, text: str) -> Optional[Dict[str, Any]]:
        """Apply one client frame and return the reply, if any."""
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            return {"type": "error", "error": "invalid_json"}
        if not isinstance(message, dict):
            return {"type": "error", "error": "invalid_message"}

        kind = message.get("type")
        if kind == "ping":
            return {"type": "pong"}

        if kind in ("join", "leave"):
            room = message.get("room")
            if not isinstance(room, str) or not room or len(room) > MAX_ROOM_LENGTH:
                return {"type": "error", "error": "invalid_room"}
            if kind == "join":
                self.registry.join(binding.connection_id, room)
                return {"type": "joined", "room": room}
            self.registry.leave(binding.connection_id, room)
            return {"type": "left", "room": room}

        return {"type": "error", "error": "unknown_message"}
