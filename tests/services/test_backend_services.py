# tests/services/test_backend_services.py
"""
Unit tests for the document, blob and payment services.

Weaviate and Stripe are patched; the blob store runs against an
httpx.MockTransport.
"""

import asyncio
import time
from unittest.mock import Mock, patch

import httpx
import pytest
import stripe

from fleetauth.core.exceptions import (
    BlobStoreError,
    ConfigurationError,
    DocumentStoreError,
    PaymentServiceError,
    ValidationFailedError,
)
from fleetauth.services.blob_service import BlobService, BlobStoreConfig
from fleetauth.services.document_service import DocumentService, DocumentStoreConfig
from fleetauth.services.payment_service import PaymentService

BUCKET_URL = "https://storage.googleapis.com/fleetauth-media"


# =============================================================================
# DOCUMENT SERVICE
# =============================================================================

@pytest.fixture
def mock_weaviate_client():
    client = Mock()
    client.is_ready.return_value = True
    collection = Mock()
    collection.data.delete_many.return_value = Mock(failed=0, matches=3, successful=3)
    client.collections.get.return_value = collection
    return client


@pytest.fixture
async def document_service(mock_weaviate_client):
    service = DocumentService(DocumentStoreConfig(url="https://weaviate.test", api_key="key"))
    with patch('fleetauth.services.document_service.weaviate.connect_to_weaviate_cloud',
               return_value=mock_weaviate_client):
        await service.initialize()
    return service


class TestDocumentService:

    async def test_requires_url(self):
        service = DocumentService(DocumentStoreConfig(url=None))

        with pytest.raises(ConfigurationError):
            await service.initialize()

    async def test_delete_owned_documents(self, document_service, mock_weaviate_client):
        deleted = await document_service.delete_owned_documents("ArticlesView", 42)

        assert deleted == 3
        mock_weaviate_client.collections.get.assert_called_once_with("ArticlesView")
        collection = mock_weaviate_client.collections.get.return_value
        assert "where" in collection.data.delete_many.call_args.kwargs

    async def test_partial_bulk_delete_is_an_error(self, document_service, mock_weaviate_client):
        collection = mock_weaviate_client.collections.get.return_value
        collection.data.delete_many.return_value = Mock(failed=1, matches=3, successful=2)

        with pytest.raises(DocumentStoreError) as exc_info:
            await document_service.delete_owned_documents("ArticlesView", 42)

        assert exc_info.value.collection == "ArticlesView"

    async def test_request_failure(self, document_service, mock_weaviate_client):
        collection = mock_weaviate_client.collections.get.return_value
        collection.data.delete_many.side_effect = Exception("gRPC unavailable")

        with pytest.raises(DocumentStoreError):
            await document_service.delete_owned_documents("ArticlesView", 42)

    async def test_not_ready_after_connect(self, mock_weaviate_client):
        mock_weaviate_client.is_ready.return_value = False
        service = DocumentService(DocumentStoreConfig(url="https://weaviate.test"))

        with patch('fleetauth.services.document_service.weaviate.connect_to_weaviate_cloud',
                   return_value=mock_weaviate_client):
            with pytest.raises(DocumentStoreError):
                await service.initialize()

        mock_weaviate_client.close.assert_called_once()

    async def test_concurrent_first_use_builds_one_client(self, mock_weaviate_client):
        service = DocumentService(DocumentStoreConfig(url="https://weaviate.test"))
        created = []

        def connect(**kwargs):
            time.sleep(0.01)
            created.append(kwargs["cluster_url"])
            return mock_weaviate_client

        with patch('fleetauth.services.document_service.weaviate.connect_to_weaviate_cloud',
                   side_effect=connect):
            results = await asyncio.gather(
                service.delete_owned_documents("ArticlesView", 42),
                service.delete_owned_documents("ArticleStats", 42),
            )

        assert results == [3, 3]
        assert created == ["https://weaviate.test"]


# =============================================================================
# BLOB SERVICE
# =============================================================================

def blob_service_with(handler) -> BlobService:
    return BlobService(BlobStoreConfig(api_token="token"), transport=httpx.MockTransport(handler))


class TestBlobService:

    def test_object_name_round_trip(self):
        service = BlobService(BlobStoreConfig())

        assert service.object_name(service.public_url_for("avatars/a.png")) == "avatars/a.png"

    @pytest.mark.parametrize("url", [
        "https://elsewhere.example.com/a.png",
        f"{BUCKET_URL}/",
        "https://storage.googleapis.com/other-bucket/a.png",
    ])
    def test_foreign_urls_rejected(self, url):
        with pytest.raises(ValidationFailedError):
            BlobService(BlobStoreConfig()).object_name(url)

    async def test_upload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["name"] = request.url.params["name"]
            seen["auth"] = request.headers["Authorization"]
            seen["type"] = request.headers["Content-Type"]
            return httpx.Response(200, json={"name": seen["name"]})

        url = await blob_service_with(handler).upload(b"png-bytes", "image/png")

        assert seen["path"] == "/upload/storage/v1/b/fleetauth-media/o"
        assert seen["name"].startswith("avatars/") and seen["name"].endswith(".png")
        assert seen["auth"] == "Bearer token"
        assert seen["type"] == "image/png"
        assert url == f"{BUCKET_URL}/{seen['name']}"

    async def test_upload_failure(self):
        service = blob_service_with(lambda request: httpx.Response(500))

        with pytest.raises(BlobStoreError):
            await service.upload(b"png-bytes", "image/png")

    async def test_delete(self):
        paths = []

        def handler(request):
            paths.append(request.url.raw_path.decode())
            return httpx.Response(204)

        assert await blob_service_with(handler).delete(f"{BUCKET_URL}/avatars/a.png") is True
        assert paths == ["/storage/v1/b/fleetauth-media/o/avatars%2Fa.png"]

    async def test_delete_missing_object(self):
        service = blob_service_with(lambda request: httpx.Response(404))

        assert await service.delete(f"{BUCKET_URL}/avatars/a.png") is False

    async def test_delete_failure_names_url(self):
        service = blob_service_with(lambda request: httpx.Response(503))

        with pytest.raises(BlobStoreError) as exc_info:
            await service.delete(f"{BUCKET_URL}/avatars/a.png")

        assert exc_info.value.url == f"{BUCKET_URL}/avatars/a.png"


# =============================================================================
# PAYMENT SERVICE
# =============================================================================

class TestPaymentService:

    async def test_disabled_without_key(self):
        service = PaymentService(None)

        assert not service.is_enabled()
        with pytest.raises(PaymentServiceError):
            await service.create_customer("ada@example.com")

    async def test_create_customer(self):
        service = PaymentService("sk_test_0123456789")

        with patch("stripe.Customer.create", return_value=Mock(id="cus_123")) as create:
            customer_id = await service.create_customer("ada@example.com")

        assert customer_id == "cus_123"
        assert create.call_args.kwargs["email"] == "ada@example.com"
        assert create.call_args.kwargs["api_key"] == "sk_test_0123456789"

    async def test_create_card(self):
        service = PaymentService("sk_test_0123456789")

        with patch("stripe.Customer.create_source", return_value=Mock(id="card_456")) as create_source:
            card_id = await service.create_card("tok_visa", "cus_123")

        assert card_id == "card_456"
        assert create_source.call_args.args == ("cus_123",)
        assert create_source.call_args.kwargs["source"] == "tok_visa"

    async def test_declined_card(self):
        service = PaymentService("sk_test_0123456789")
        declined = stripe.CardError("Your card was declined.", param="source", code="card_declined")

        with patch("stripe.Customer.create_source", side_effect=declined):
            with pytest.raises(ValidationFailedError) as exc_info:
                await service.create_card("tok_declined", "cus_123")

        assert exc_info.value.field == "token"

    async def test_provider_outage(self):
        service = PaymentService("sk_test_0123456789")

        with patch("stripe.Customer.create", side_effect=stripe.APIConnectionError("network down")):
            with pytest.raises(PaymentServiceError) as exc_info:
                await service.create_customer("ada@example.com")

        assert exc_info.value.retryable is True
