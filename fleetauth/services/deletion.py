# fleetauth/services/deletion.py
"""
Account Deletion Orchestrator.

Deleting an account touches four stores that share no transaction. The
relational row is the source of truth, so it is deleted first and is the only
step whose failure is reported to the caller. Everything after it is
compensating cleanup: attempted once, logged per failed item, never rolled
back. Re-running the whole sequence for the same identity is safe and is the
recovery path for a crash mid-cleanup.

    1. snapshot blob references      (failure aborts, nothing deleted)
    2. delete identity + articles    (failure -> AccountDeletionError)
    3. delete each blob              (concurrently with 4)
    4. delete derived documents
    5. destroy sessions, publish force-close
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from fleetauth.core.exceptions import AccountDeletionError, DatabaseError, PartialCleanupFailure
from fleetauth.realtime.relay import FanoutRelay
from fleetauth.services.blob_service import BlobService
from fleetauth.services.document_service import DocumentService
from fleetauth.services.identity_repository import IdentityRepository
from fleetauth.sessions.store import SessionStore

logger = logging.getLogger(__name__)

STEP_BLOB = "blob"
STEP_DOCUMENTS = "documents"
STEP_SESSIONS = "sessions"
STEP_FORCE_CLOSE = "force_close"


class DeletionReport(BaseModel):
    """Outcome of one delete_account run."""

    identity_id: int
    relational_deleted: bool = False
    blobs_deleted: int = 0
    documents_deleted: int = 0
    sessions_destroyed: int = 0
    failures: List[PartialCleanupFailure] = Field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.failures


class AccountDeletionOrchestrator:
    """Runs the deletion sequence for one identity."""

    def __init__(
        self,
        identities: IdentityRepository,
        documents: DocumentService,
        blobs: BlobService,
        sessions: SessionStore,
        relay: Optional[FanoutRelay],
        document_collections: Sequence[str]
    ):
        self.identities = identities
        self.documents = documents
        self.blobs = blobs
        self.sessions = sessions
        self.relay = relay
        self.document_collections = list(document_collections)

    async def delete_account(self, identity_id: int) -> DeletionReport:
        """
        Delete an identity and everything that references it.

        Raises:
            DatabaseError: If the media snapshot cannot be read (nothing deleted)
            AccountDeletionError: If the relational delete fails (nothing deleted)
        """
        logger.info(f"🗑️ Deleting account {identity_id}")
        report = DeletionReport(identity_id=identity_id)

        snapshot = await self.identities.snapshot_media(identity_id)

        try:
            report.relational_deleted = await self.identities.delete(identity_id)
        except DatabaseError as e:
            logger.error(f"❌ Relational delete failed for identity {identity_id}: {e}")
            raise AccountDeletionError(
                "Relational delete failed",
                identity_id=identity_id,
                details={"original_error": str(e)}
            )

        if not report.relational_deleted:
            logger.info(f"Identity {identity_id} was already absent; re-running cleanup")

        blob_failures, document_failures = await asyncio.gather(
            self._delete_blobs(snapshot.urls, report),
            self._delete_documents(identity_id, report),
        )
        report.failures.extend(blob_failures)
        report.failures.extend(document_failures)
        report.failures.extend(await self._revoke_sessions(identity_id, report))

        for failure in report.failures:
            logger.warning(
                f"⚠️ Partial cleanup failure for identity {identity_id}: "
                f"step={failure.step} target={failure.target} error={failure.error}"
            )

        logger.info(
            f"✅ Account {identity_id} deleted: {report.blobs_deleted} blob(s), "
            f"{report.documents_deleted} document(s), {report.sessions_destroyed} session(s), "
            f"{len(report.failures)} failure(s)"
        )
        return report

    async def _delete_blobs(self, urls: List[str], report: DeletionReport) -> List[PartialCleanupFailure]:
        results = await asyncio.gather(*[self.blobs.delete(url) for url in urls], return_exceptions=True)

        failures = []
        for url, result in zip(urls, results):
            if isinstance(result, Exception):
                failures.append(PartialCleanupFailure(step=STEP_BLOB, target=url, error=str(result)))
            elif result:
                report.blobs_deleted += 1
        return failures

    async def _delete_documents(self, identity_id: int, report: DeletionReport) -> List[PartialCleanupFailure]:
        results = await asyncio.gather(
            *[self.documents.delete_owned_documents(c, identity_id) for c in self.document_collections],
            return_exceptions=True
        )

        failures = []
        for collection, result in zip(self.document_collections, results):
            if isinstance(result, Exception):
                failures.append(PartialCleanupFailure(step=STEP_DOCUMENTS, target=collection, error=str(result)))
            else:
                report.documents_deleted += result
        return failures

    async def _revoke_sessions(self, identity_id: int, report: DeletionReport) -> List[PartialCleanupFailure]:
        failures = []
        try:
            report.sessions_destroyed = await self.sessions.destroy_identity_sessions(identity_id)
        except Exception as e:
            failures.append(PartialCleanupFailure(step=STEP_SESSIONS, target=str(identity_id), error=str(e)))

        if self.relay is not None:
            try:
                await self.relay.force_close(identity_id, reason="account_deleted")
            except Exception as e:
                failures.append(PartialCleanupFailure(step=STEP_FORCE_CLOSE, target=str(identity_id), error=str(e)))
        return failures
