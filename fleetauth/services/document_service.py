# fleetauth/services/document_service.py
"""
Document Service for derived per-identity documents.

Wraps the Weaviate collections that hold documents derived from an identity
(article view statistics and the like). The fabric only needs to remove them
in bulk when the owning identity is deleted.
"""
import asyncio
from typing import Optional, Dict, Any
from dataclasses import dataclass
import logging
import weaviate
from weaviate.client import WeaviateClient
from weaviate.classes.init import Auth, AdditionalConfig, Timeout
from weaviate.classes.query import Filter

from fleetauth.core.service_base import BaseService, ServiceConfig
from fleetauth.core.exceptions import DocumentStoreError, ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class DocumentStoreConfig(ServiceConfig):
    """Configuration for Document Service"""
    url: Optional[str] = None
    api_key: Optional[str] = None
    owner_property: str = "author_id"
    timeout: int = 30


class DocumentService(BaseService[DocumentStoreConfig]):
    """
    Async facade over the synchronous Weaviate client.

    Calls into the client run in a worker thread so they never block the
    event loop serving other requests.
    """

    def __init__(self, config: DocumentStoreConfig):
        super().__init__(config, logger)

    def _validate_config(self) -> None:
        super()._validate_config()

        if not self.config.url:
            raise ConfigurationError(
                "Weaviate URL is required. Set WEAVIATE_URL environment variable.",
                component="weaviate"
            )

    async def _initialize_client(self) -> WeaviateClient:
        """Initialize the Weaviate client"""
        try:
            client = await asyncio.to_thread(
                weaviate.connect_to_weaviate_cloud,
                cluster_url=self.config.url,
                auth_credentials=Auth.api_key(self.config.api_key) if self.config.api_key else None,
                additional_config=AdditionalConfig(
                    timeout=Timeout(
                        init=self.config.timeout,
                        query=self.config.timeout,
                        insert=self.config.timeout * 2
                    )
                )
            )
        except Exception as e:
            raise DocumentStoreError(
                f"Failed to initialize Weaviate client: {e}",
                operation="initialize",
                details={"url": self.config.url}
            )

        if not await asyncio.to_thread(client.is_ready):
            await asyncio.to_thread(client.close)
            raise DocumentStoreError(
                "Weaviate client is not ready after initialization",
                operation="initialize",
                details={"url": self.config.url}
            )

        self.logger.info("Weaviate client initialized successfully")
        return client

    async def delete_owned_documents(self, collection: str, identity_id: int) -> int:
        """
        Bulk-delete every document in `collection` owned by the identity.

        Returns:
            Number of documents deleted (0 on a re-run)

        Raises:
            DocumentStoreError: If the request fails or some objects could not be deleted
        """
        await self.ensure_initialized()

        try:
            collection_obj = self.client.collections.get(collection)
            result = await asyncio.to_thread(
                collection_obj.data.delete_many,
                where=Filter.by_property(self.config.owner_property).equal(identity_id)
            )
        except Exception as e:
            raise DocumentStoreError(
                f"Bulk delete failed in collection '{collection}': {e}",
                collection=collection,
                operation="delete_many"
            )

        if result.failed:
            raise DocumentStoreError(
                f"{result.failed} of {result.matches} documents could not be deleted",
                collection=collection,
                operation="delete_many"
            )

        self.logger.debug(f"Deleted {result.successful} documents from {collection} for identity {identity_id}")
        return result.successful

    async def health_check(self) -> Dict[str, Any]:
        try:
            await self.ensure_initialized()
            is_ready = await asyncio.to_thread(self.client.is_ready)

            return {
                "healthy": is_ready,
                "status": "connected" if is_ready else "not ready",
                "details": {"url": self.config.url}
            }

        except Exception as e:
            return {
                "healthy": False,
                "status": "error",
                "details": {"error": str(e), "url": self.config.url}
            }

    async def _cleanup(self) -> None:
        """Clean up Weaviate client connection"""
        if self._client:
            try:
                self._client.close()
            except Exception as e:
                self.logger.warning(f"Error closing Weaviate client: {e}")
