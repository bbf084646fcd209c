# fleetauth/core/fabric.py
"""
Composition root: builds every service one fleet member needs and wires
them together. The FastAPI app keeps the result on app.state.fabric; tests
build their own with doubles injected.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict

from fleetauth.core.config import Settings, resolve_redis_url
from fleetauth.realtime.bridge import RealtimeBridge
from fleetauth.realtime.registry import ConnectionRegistry
from fleetauth.realtime.relay import FanoutRelay
from fleetauth.security.csrf import CsrfGuard
from fleetauth.security.gate import AuthGate
from fleetauth.security.pipeline import AuthPipeline, CsrfStage, SessionStage
from fleetauth.services.blob_service import BlobService, BlobStoreConfig
from fleetauth.services.deletion import AccountDeletionOrchestrator
from fleetauth.services.document_service import DocumentService, DocumentStoreConfig
from fleetauth.services.identity_repository import IdentityRepository
from fleetauth.services.payment_service import PaymentService
from fleetauth.services.redis_service import RedisConfig, RedisService
from fleetauth.sessions.codec import SessionCodec
from fleetauth.sessions.store import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class FabricServices:
    settings: Settings
    redis: RedisService
    identities: IdentityRepository
    documents: DocumentService
    blobs: BlobService
    payments: PaymentService
    store: SessionStore
    codec: SessionCodec
    gate: AuthGate
    csrf: CsrfGuard
    pipeline: AuthPipeline
    registry: ConnectionRegistry
    relay: FanoutRelay
    bridge: RealtimeBridge
    deletion: AccountDeletionOrchestrator
    started: bool = field(default=False)

    async def start(self) -> None:
        """Connect the backends the auth path cannot work without, then start listening."""
        await self.redis.initialize()
        await self.identities.create_schema()
        await self.relay.start()
        self.started = True

    async def stop(self) -> None:
        await self.relay.stop()
        await self.registry.close_all()
        await self.documents.shutdown()
        await self.blobs.shutdown()
        await self.redis.shutdown()
        await self.identities.dispose()
        self.started = False

    async def readiness(self) -> Dict[str, Any]:
        """Health of every shared backend, for the readiness probe"""
        checks = {
            "redis": await self.redis.health_check(),
            "database": await self.identities.health_check(),
            "documents": await self.documents.health_check(),
            "blobs": await self.blobs.health_check(),
            "payments": self.payments.health_summary(),
        }
        # Documents, blobs and payments degrade single operations only
        ready = checks["redis"]["healthy"] and checks["database"]["healthy"]
        return {"ready": ready, "relay": self.relay.is_running, "checks": checks}


def build_fabric(settings: Settings, **overrides) -> FabricServices:
    """
    Build the services from settings.

    Any keyword matching a FabricServices field (redis, documents, blobs,
    payments, identities) replaces the default instance.
    """
    redis_service = overrides.get("redis") or RedisService(RedisConfig(url=resolve_redis_url(settings)))
    identities = overrides.get("identities") or IdentityRepository(settings.DATABASE_URL, echo=settings.DEBUG)
    documents = overrides.get("documents") or DocumentService(DocumentStoreConfig(
        url=settings.WEAVIATE_URL,
        api_key=settings.WEAVIATE_API_KEY,
        owner_property=settings.DOCUMENT_OWNER_PROPERTY,
    ))
    blobs = overrides.get("blobs") or BlobService(BlobStoreConfig(
        api_url=settings.BLOB_API_URL,
        public_url=settings.BLOB_PUBLIC_URL,
        bucket=settings.BLOB_BUCKET,
        prefix=settings.BLOB_PREFIX,
        api_token=settings.BLOB_API_TOKEN,
    ))
    payments = overrides.get("payments") or PaymentService(settings.STRIPE_SECRET_KEY)

    store = SessionStore(redis_service, settings.SESSION_TTL_SECONDS, settings.SESSION_KEY_PREFIX)
    codec = SessionCodec(settings.session_secrets)
    gate = AuthGate(codec, store, identities)
    csrf = CsrfGuard()
    pipeline = AuthPipeline(
        [SessionStage(gate, settings.SESSION_COOKIE_NAME), CsrfStage(csrf)],
        csrf_header=settings.CSRF_HEADER_NAME,
    )

    registry = ConnectionRegistry()
    relay = FanoutRelay(
        redis_service,
        registry,
        settings.FANOUT_CHANNEL,
        settings.FLEET_MEMBER_ID,
        poll_seconds=settings.FANOUT_POLL_SECONDS,
    )
    bridge = RealtimeBridge(gate, registry, settings.SESSION_COOKIE_NAME, settings.FLEET_MEMBER_ID)
    deletion = AccountDeletionOrchestrator(
        identities, documents, blobs, store, relay, settings.DOCUMENT_COLLECTIONS
    )

    logger.info(f"🧩 Fabric assembled for fleet member {settings.FLEET_MEMBER_ID}")
    return FabricServices(
        settings=settings,
        redis=redis_service,
        identities=identities,
        documents=documents,
        blobs=blobs,
        payments=payments,
        store=store,
        codec=codec,
        gate=gate,
        csrf=csrf,
        pipeline=pipeline,
        registry=registry,
        relay=relay,
        bridge=bridge,
        deletion=deletion,
    )
