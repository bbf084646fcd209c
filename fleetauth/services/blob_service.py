# fleetauth/services/blob_service.py
"""
Blob Service for uploaded media.

Talks to a GCS-compatible JSON API over HTTP. Objects are addressed by
their public URL ``{public_url}/{bucket}/{name}``; the service maps that back
to the API resource when deleting.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote
from uuid import uuid4

import httpx

from fleetauth.core.service_base import BaseService, ServiceConfig
from fleetauth.core.exceptions import BlobStoreError, ValidationFailedError

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


@dataclass
class BlobStoreConfig(ServiceConfig):
    """Configuration for Blob Service"""
    api_url: str = "https://storage.googleapis.com"
    public_url: str = "https://storage.googleapis.com"
    bucket: str = "fleetauth-media"
    prefix: str = "avatars"
    api_token: Optional[str] = None
    timeout: float = 10.0


class BlobService(BaseService[BlobStoreConfig]):
    """Upload and delete objects in one bucket."""

    def __init__(self, config: BlobStoreConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config, logger)
        self._transport = transport

    async def _initialize_client(self) -> httpx.AsyncClient:
        headers = {}
        if self.config.api_token:
            headers["Authorization"] = f"Bearer {self.config.api_token}"
        return httpx.AsyncClient(
            base_url=self.config.api_url,
            headers=headers,
            timeout=self.config.timeout,
            transport=self._transport,
        )

    def public_url_for(self, name: str) -> str:
        return f"{self.config.public_url.rstrip('/')}/{self.config.bucket}/{name}"

    def object_name(self, url: str) -> str:
        """
        Map a public URL back to its object name.

        Raises:
            ValidationFailedError: If the URL does not belong to the bucket
        """
        base = f"{self.config.public_url.rstrip('/')}/{self.config.bucket}/"
        if not url.startswith(base) or len(url) == len(base):
            raise ValidationFailedError(f"Not an object of bucket {self.config.bucket}", field="url")
        return url[len(base):]

    async def upload(self, data: bytes, content_type: str) -> str:
        """
        Store a new object and return its public URL.

        Raises:
            BlobStoreError: If the upload fails
        """
        await self.ensure_initialized()

        extension = _EXTENSIONS.get(content_type, "bin")
        name = f"{self.config.prefix}/{uuid4().hex}.{extension}"

        try:
            response = await self.client.post(
                f"/upload/storage/v1/b/{self.config.bucket}/o",
                params={"uploadType": "media", "name": name},
                content=data,
                headers={"Content-Type": content_type},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise BlobStoreError(f"Upload failed: {e}", url=name, operation="upload")

        url = self.public_url_for(name)
        self.logger.info(f"Uploaded blob {url}")
        return url

    async def delete(self, url: str) -> bool:
        """
        Delete the object behind a public URL.

        Returns:
            True if deleted, False if it was already gone

        Raises:
            BlobStoreError: If the delete fails for any other reason
        """
        await self.ensure_initialized()

        name = self.object_name(url)
        try:
            response = await self.client.delete(
                f"/storage/v1/b/{self.config.bucket}/o/{quote(name, safe='')}"
            )
        except httpx.HTTPError as e:
            raise BlobStoreError(f"Delete failed: {e}", url=url, operation="delete")

        if response.status_code == 404:
            self.logger.debug(f"Blob already absent: {url}")
            return False
        if response.is_error:
            raise BlobStoreError(
                f"Delete failed with status {response.status_code}",
                url=url,
                operation="delete"
            )
        return True

    async def health_check(self) -> Dict[str, Any]:
        return {
            "healthy": self.is_initialized,
            "status": "ready" if self.is_initialized else "not_initialized",
            "details": {"bucket": self.config.bucket}
        }

    async def _cleanup(self) -> None:
        if self._client:
            await self._client.aclose()
