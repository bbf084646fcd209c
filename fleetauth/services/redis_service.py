# fleetauth/services/redis_service.py
"""
Redis Service for the fleetauth fabric.

Async-only wrapper around the shared Redis instance that every fleet member
talks to for session records and the fanout bus:
- Automatic JSON serialization/deserialization
- TTL support
- Fail-closed error handling (every backend error raises RedisServiceError)
- Health checks
"""
import json
import redis.asyncio as redis
from typing import Optional, Dict, Any, Set
from dataclasses import dataclass
import logging

from fleetauth.core.service_base import BaseService, ServiceConfig
from fleetauth.core.exceptions import RedisServiceError, ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class RedisConfig(ServiceConfig):
    """Configuration for Redis Service"""
    url: Optional[str] = None
    decode_responses: bool = True
    socket_timeout: float = 5.0
    max_connections: int = 50
    retry_on_timeout: bool = True
    health_check_interval: int = 30


class RedisService(BaseService[RedisConfig]):
    """
    Async Redis service for session storage and pub/sub.

    Unlike a cache, the session store must never treat an unreachable Redis
    as "no data": every operation raises RedisServiceError on failure so the
    auth layer can fail closed.
    """

    def __init__(self, config: RedisConfig, client: Optional[redis.Redis] = None):
        """
        Initialize Redis Service.

        Args:
            config: Redis configuration
            client: Pre-built client (tests inject a double here)
        """
        super().__init__(config, logger)
        self._injected_client = client

    def _validate_config(self) -> None:
        """Validate Redis configuration"""
        super()._validate_config()

        if not self.config.url and self._injected_client is None:
            raise ConfigurationError(
                "No Redis URL configured. Set REDIS_URL.",
                component="redis"
            )

    async def _initialize_client(self) -> redis.Redis:
        """Initialize the Redis client"""
        client = self._injected_client or redis.from_url(
            self.config.url,
            decode_responses=self.config.decode_responses,
            socket_timeout=self.config.socket_timeout,
            max_connections=self.config.max_connections,
            retry_on_timeout=self.config.retry_on_timeout,
            health_check_interval=self.config.health_check_interval
        )

        try:
            await client.ping()
        except Exception as e:
            raise RedisServiceError(f"Failed to connect to Redis: {e}", operation="ping")

        self.logger.info("Redis connection successful")
        return client

    async def get(self, key: str, deserialize_json: bool = True) -> Any:
        """
        Get a value from Redis.

        Returns:
            The stored value, or None if the key does not exist

        Raises:
            RedisServiceError: If Redis cannot be reached
        """
        await self.ensure_initialized()

        try:
            value = await self.client.get(key)
        except Exception as e:
            raise RedisServiceError(f"Redis get failed: {e}", key=key, operation="get")

        if value is None:
            return None

        if deserialize_json and isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        serialize_json: bool = True,
        only_if_exists: bool = False
    ) -> bool:
        """
        Set a value in Redis.

        Args:
            key: The key to set
            value: The value to store
            ttl: Time to live in seconds
            serialize_json: Whether to serialize non-string values as JSON
            only_if_exists: Write only if the key is still present (SET XX)

        Returns:
            False if only_if_exists was set and the key was gone
        """
        await self.ensure_initialized()

        if serialize_json and not isinstance(value, (str, bytes)):
            value = json.dumps(value)

        try:
            result = await self.client.set(key, value, ex=ttl, xx=only_if_exists)
        except Exception as e:
            raise RedisServiceError(f"Redis set failed: {e}", key=key, operation="set")
        return bool(result)

    async def delete(self, *keys: str) -> int:
        """
        Delete one or more keys.

        Returns:
            Number of keys deleted
        """
        if not keys:
            return 0
        await self.ensure_initialized()

        try:
            return await self.client.delete(*keys)
        except Exception as e:
            raise RedisServiceError(f"Redis delete failed: {e}", key=keys[0], operation="delete")

    async def expire(self, key: str, seconds: int) -> bool:
        await self.ensure_initialized()

        try:
            return bool(await self.client.expire(key, seconds))
        except Exception as e:
            raise RedisServiceError(f"Redis expire failed: {e}", key=key, operation="expire")

    async def add_to_set(self, key: str, *members: str) -> int:
        await self.ensure_initialized()

        try:
            return await self.client.sadd(key, *members)
        except Exception as e:
            raise RedisServiceError(f"Redis sadd failed: {e}", key=key, operation="sadd")

    async def remove_from_set(self, key: str, *members: str) -> int:
        await self.ensure_initialized()

        try:
            return await self.client.srem(key, *members)
        except Exception as e:
            raise RedisServiceError(f"Redis srem failed: {e}", key=key, operation="srem")

    async def set_members(self, key: str) -> Set[str]:
        await self.ensure_initialized()

        try:
            members = await self.client.smembers(key)
        except Exception as e:
            raise RedisServiceError(f"Redis smembers failed: {e}", key=key, operation="smembers")
        return {m.decode() if isinstance(m, bytes) else m for m in members}

    async def publish(self, channel: str, message: str) -> int:
        """
        Publish a message on a pub/sub channel.

        Returns:
            Number of subscribers (fleet members) that received it
        """
        await self.ensure_initialized()

        try:
            return await self.client.publish(channel, message)
        except Exception as e:
            raise RedisServiceError(f"Redis publish failed: {e}", key=channel, operation="publish")

    def pubsub(self):
        """Return a new pub/sub handle on the shared client"""
        return self.client.pubsub()

    async def health_check(self) -> Dict[str, Any]:
        """
        Check Redis service health.

        Returns:
            Health status including connection info
        """
        try:
            if not self._client:
                return {
                    "healthy": False,
                    "status": "not_connected",
                    "details": {"error": "Client not initialized"}
                }

            await self._client.ping()
            info = await self._client.info()

            return {
                "healthy": True,
                "status": "connected",
                "details": {
                    "redis_version": info.get("redis_version", "unknown"),
                    "connected_clients": info.get("connected_clients", 0)
                }
            }

        except Exception as e:
            return {
                "healthy": False,
                "status": "error",
                "details": {"error": str(e)}
            }

    async def _cleanup(self) -> None:
        """Close the Redis connection pool"""
        if self._client:
            try:
                await self._client.aclose()
            except Exception as e:
                self.logger.warning(f"Error closing Redis client: {e}")
