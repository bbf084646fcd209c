# fleetauth/realtime/relay.py
"""
Fanout Relay: cross-member delivery of realtime events.

Every fleet member subscribes to one Redis pub/sub channel. Publishing puts
an event on that channel; each member's listener task receives it and hands
it to its own ConnectionRegistry. A connection bound on member B therefore
receives events published by member A without either knowing the other.

Ordering: each publisher stamps a monotonically increasing sequence on its
own events, and Redis keeps one publisher's messages in order. There is no
order across publishers.
"""

import asyncio
import itertools
import logging
from typing import Any, Dict, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError

from fleetauth.realtime.registry import ConnectionRegistry
from fleetauth.services.redis_service import RedisService

logger = logging.getLogger(__name__)

FORCE_CLOSE_CODE = 4403


class FanoutEvent(BaseModel):
    """One message on the fanout channel."""
    event_id: str = Field(default_factory=lambda: uuid4().hex)
    kind: Literal["message", "force_close"] = "message"
    identity_id: Optional[int] = None
    room: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None
    origin: Optional[str] = None
    sequence: int = 0

    def frame(self) -> Dict[str, Any]:
        """What a client socket receives for a message event"""
        return {"type": "event", "event_id": self.event_id, "room": self.room, "payload": self.payload}


class FanoutRelay:
    """
    Publisher and listener for the fanout channel.

    Usage:
        relay = FanoutRelay(redis_service, registry, "fleetauth:fanout", "member-a")
        await relay.start()
        await relay.publish_to_identity(42, {"hello": "world"})
        await relay.stop()
    """

    def __init__(
        self,
        redis_service: RedisService,
        registry: ConnectionRegistry,
        channel: str,
        fleet_member_id: str,
        poll_seconds: float = 1.0
    ):
        self.redis = redis_service
        self.registry = registry
        self.channel = channel
        self.fleet_member_id = fleet_member_id
        self.poll_seconds = poll_seconds

        self._sequence = itertools.count(1)
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(self, event: FanoutEvent) -> FanoutEvent:
        """
        Stamp and publish an event.

        Raises:
            RedisServiceError: If the bus is unreachable
        """
        event = event.model_copy(update={"origin": self.fleet_member_id, "sequence": next(self._sequence)})
        receivers = await self.redis.publish(self.channel, event.model_dump_json())
        logger.debug(f"📣 Published {event.kind} #{event.sequence} to {receivers} member(s)")
        return event

    async def publish_to_identity(self, identity_id: int, payload: Dict[str, Any]) -> FanoutEvent:
        return await self.publish(FanoutEvent(identity_id=identity_id, payload=payload))

    async def publish_to_room(self, room: str, payload: Dict[str, Any]) -> FanoutEvent:
        return await self.publish(FanoutEvent(room=room, payload=payload))

    async def force_close(self, identity_id: int, reason: str = "account_deleted") -> FanoutEvent:
        """Close the identity's connections on every fleet member."""
        event = await self.publish(FanoutEvent(kind="force_close", identity_id=identity_id, reason=reason))
        logger.info(f"🚪 Force-close published for identity {identity_id} ({reason})")
        return event

    # ------------------------------------------------------------------
    # Listening
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return

        await self.redis.ensure_initialized()
        self._pubsub = self.redis.pubsub()
        await self._pubsub.subscribe(self.channel)

        self._running = True
        self._listener = asyncio.create_task(self._listen())
        logger.info(f"📡 Fanout relay {self.fleet_member_id} listening on {self.channel}")

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._listener:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            except Exception as e:
                logger.warning(f"Error closing fanout subscription: {e}")
            self._pubsub = None

        logger.info(f"📡 Fanout relay {self.fleet_member_id} stopped")

    async def _listen(self) -> None:
        while self._running:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self.poll_seconds
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Fanout listener error: {e}")
                await asyncio.sleep(self.poll_seconds)
                continue

            if message is None:
                continue

            try:
                await self.dispatch(message["data"])
            except asyncio.CancelledError:
                raise
            except Exception:
                # One bad event must not stop the listener
                logger.error("❌ Fanout dispatch failed", exc_info=True)

    async def dispatch(self, raw: Any) -> int:
        """Deliver one received event to local connections. Returns how many were reached."""
        if isinstance(raw, bytes):
            raw = raw.decode()
        try:
            event = FanoutEvent.model_validate_json(raw)
        except ValidationError:
            logger.warning("⚠️ Ignoring malformed fanout event")
            return 0

        if event.kind == "force_close":
            if event.identity_id is None:
                return 0
            return await self.registry.close_identity(event.identity_id, FORCE_CLOSE_CODE, event.reason or "")

        if event.identity_id is not None:
            return await self.registry.send_to_identity(event.identity_id, event.frame())
        if event.room is not None:
            return await self.registry.send_to_room(event.room, event.frame())
        return 0
