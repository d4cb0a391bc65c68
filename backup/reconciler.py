"""
Backup reconciliation: copy every blob tagged backup=needed into the backup
container and flip its tag to done.

One cycle:
  1. discover pending paths (PendingBackupSource)
  2. mint a short-lived read SAS for the source blob
  3. server-side copy to the same path in the backup container
  4. set backup=done on the primary blob

A failed copy leaves the tag at 'needed', so the blob is picked up again on
the next cycle. A blob tagged 'done' is never discovered again.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from azure.core.exceptions import AzureError
from loguru import logger

from backup.pending import PendingBackupSource, TagQueryPendingSource
from storage.errors import StorageError
from storage.object_store.access import AccessIssuer
from storage.object_store.buckets import BACKUP_DONE, BACKUP_NEEDED, BACKUP_TAG, ObjectStore

COPY_SOURCE_EXPIRY_SECONDS = 600


@dataclass
class BackupReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    discovered: int = 0
    copied: int = 0
    failed: int = 0
    retagged: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "discovered": self.discovered,
            "copied": self.copied,
            "failed": self.failed,
            "retagged": self.retagged,
            "failures": self.failures,
            "error": self.error,
        }


class BackupReconciler:

    def __init__(
        self,
        store: ObjectStore,
        issuer: AccessIssuer,
        source: Optional[PendingBackupSource] = None,
        copy_source_expiry_seconds: int = COPY_SOURCE_EXPIRY_SECONDS,
    ):
        self.store = store
        self.issuer = issuer
        self.source = source or TagQueryPendingSource(store)
        self.copy_source_expiry_seconds = copy_source_expiry_seconds

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def backup_one(self, path: str) -> None:
        grant = self.issuer.issue(
            path,
            permissions="r",
            expiry_seconds=self.copy_source_expiry_seconds,
            permanent=False,
        )
        await self.store.copy(grant.url, path)
        await self.store.set_tag(path, BACKUP_TAG, BACKUP_DONE)
        logger.info(f"[BACKUP] Backed up {path}")

    async def run_once(self, report: Optional[BackupReport] = None) -> BackupReport:
        report = report or BackupReport(started_at=self._now())
        try:
            async for path in self.source.list_pending():
                report.discovered += 1
                try:
                    await self.backup_one(path)
                    report.copied += 1
                except (StorageError, AzureError) as e:
                    report.failed += 1
                    report.failures[path] = str(e)
                    logger.error(f"[BACKUP] {path} left as '{BACKUP_NEEDED}': {e}")
        except AzureError as e:
            report.error = str(e)
            logger.error(f"[BACKUP] Discovery failed: {e}")

        report.finished_at = self._now()
        logger.info(
            f"[BACKUP] Cycle done: discovered={report.discovered} "
            f"copied={report.copied} failed={report.failed}"
        )
        return report

    async def retag_orphans(self) -> int:
        """
        Tag blobs that were stored but never tagged (tagging failed after
        upload) so the next discovery picks them up.
        """
        retagged = 0
        async for path, metadata in self.store.list_untagged(BACKUP_TAG):
            tags = {BACKUP_TAG: BACKUP_NEEDED}
            if metadata.get("clientId"):
                tags["client"] = metadata["clientId"]
            if metadata.get("posId"):
                tags["pos"] = metadata["posId"]
            try:
                await self.store.set_tags(path, tags)
                retagged += 1
                logger.warning(f"[BACKUP] Re-tagged untagged blob {path}")
            except (StorageError, AzureError) as e:
                logger.error(f"[BACKUP] Could not re-tag {path}: {e}")
        return retagged
