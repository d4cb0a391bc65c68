"""
Azure Blob Storage operations for receipt storage.

Operations:
  - Upload receipts (PDF) with Content-MD5, metadata and backup tags
  - Existence / properties / tag lookup
  - Streamed download (lazy, ranged chunks)
  - Server-side copy into the backup container, polled to a terminal state
  - Tag updates (read-merge-write, last write wins)
  - Tag queries for backup discovery

Classes:
  - ObjectStore: all blob operations against a StorageContext
  - BlobInfo: properties + metadata + tags of one blob
  - ReceiptStream: forward-only chunk stream of one blob
  - CopyResult: terminal outcome of a server-side copy

Usage: primary store for receipts; the backup reconciler drives copy() and set_tag()
"""

import asyncio
import base64
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import ContentSettings
from loguru import logger

from storage.context import StorageContext
from storage.errors import CopyFailed, InvalidInput, NotFound, StorageError
from storage.object_store.paths import ReceiptKey, filename_from_path

PDF_CONTENT_TYPE = "application/pdf"

BACKUP_TAG = "backup"
BACKUP_NEEDED = "needed"
BACKUP_DONE = "done"

COPY_SUCCESS = "success"
COPY_FAILED = "failed"
COPY_TIMED_OUT = "timed_out"


def content_md5(data: bytes) -> bytes:
    return hashlib.md5(data).digest()


def tag_filter(key: str, value: str) -> str:
    """Build a blob index tag filter expression for key == value."""
    escaped = value.replace("'", "''")
    return f"\"{key}\" = '{escaped}'"


# ============================================
# RESULT TYPES
# ============================================

@dataclass
class BlobInfo:
    path: str
    url: str
    content_type: Optional[str]
    content_length: Optional[int]
    last_modified: Optional[datetime]
    etag: Optional[str]
    content_md5: Optional[bytes]
    metadata: Dict[str, str] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "properties": {
                "contentType": self.content_type,
                "contentLength": self.content_length,
                "lastModified": self.last_modified.isoformat() if self.last_modified else None,
                "eTag": self.etag,
                "contentMD5": base64.b64encode(self.content_md5).decode() if self.content_md5 else None,
            },
            "metadata": self.metadata,
            "tags": self.tags,
        }


@dataclass
class CopyResult:
    path: str
    status: str
    copy_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == COPY_SUCCESS


class ReceiptStream:
    """
    Forward-only view of one blob's bytes.

    Chunks are requested from the store only as the consumer pulls them, so a
    slow client slows the upstream reads. Closing the iterator early (client
    disconnect) stops further range requests.
    """

    def __init__(self, path: str, content_type: Optional[str], size: Optional[int], downloader):
        self.path = path
        self.content_type = content_type or PDF_CONTENT_TYPE
        self.size = size
        self.filename = filename_from_path(path)
        self._downloader = downloader

    def content_disposition(self, attachment: bool = False) -> str:
        kind = "attachment" if attachment else "inline"
        return f'{kind}; filename="{self.filename}"'

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        sent = 0
        completed = False
        chunks = self._downloader.chunks()
        try:
            async for chunk in chunks:
                sent += len(chunk)
                yield chunk
            completed = True
        finally:
            if not completed:
                aclose = getattr(chunks, "aclose", None)
                if aclose is not None:
                    await aclose()
                logger.info(f"[DOWNLOAD] Stream for {self.path} closed early after {sent} bytes")


# ============================================
# OBJECT STORE
# ============================================

class ObjectStore:

    def __init__(
        self,
        context: StorageContext,
        clock: Callable[[], datetime] = None,
        sleep: Callable[[float], Awaitable[None]] = None,
    ):
        self.context = context
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep or asyncio.sleep

    def _blob(self, path: str):
        if not path:
            raise InvalidInput("Missing required field: blobPath")
        return self.context.primary.get_blob_client(path)

    # ---------- writes ----------

    async def put(
        self,
        data: bytes,
        client_id: str,
        pos_id: str,
        date_iso: Optional[str] = None,
        receipt_id: Optional[str] = None,
    ) -> str:
        """
        Store a receipt and mark it for backup.

        Returns the blob path. The object is tagged backup=needed only after
        the upload succeeds; if tagging fails the blob stays stored but is not
        picked up by backup until re-tagged (see BackupReconciler.retag_orphans).
        """
        if not data:
            raise InvalidInput("Missing required field: file")
        key = ReceiptKey.from_request(client_id, pos_id, date_iso, receipt_id, clock=self.clock)
        blob = self._blob(key.path)

        settings = ContentSettings(
            content_type=PDF_CONTENT_TYPE,
            content_disposition=f'inline; filename="{key.filename}"',
            content_md5=bytearray(content_md5(data)),
        )
        metadata = {
            "clientId": key.client_id,
            "posId": key.pos_id,
            "receiptDate": key.receipt_date.isoformat(),
        }

        await blob.upload_blob(
            data,
            overwrite=True,
            content_settings=settings,
            metadata=metadata,
            validate_content=True,
        )
        logger.info(f"[UPLOAD] Stored {key.path} ({len(data)} bytes)")

        try:
            await blob.set_blob_tags(
                {BACKUP_TAG: BACKUP_NEEDED, "client": key.client_id, "pos": key.pos_id}
            )
        except AzureError as e:
            logger.error(f"[UPLOAD] Stored {key.path} but could not tag it for backup: {e}")
            raise StorageError(f"Receipt stored at {key.path} but backup tagging failed: {e}") from e

        return key.path

    async def set_tags(self, path: str, updates: Dict[str, str]) -> Dict[str, str]:
        """Merge `updates` into the blob's tag set. Last write wins."""
        blob = self._blob(path)
        try:
            tags = dict(await blob.get_blob_tags() or {})
            tags.update(updates)
            await blob.set_blob_tags(tags)
        except ResourceNotFoundError:
            raise NotFound(path)
        return tags

    async def set_tag(self, path: str, key: str, value: str) -> Dict[str, str]:
        return await self.set_tags(path, {key: value})

    # ---------- reads ----------

    async def exists(self, path: str) -> bool:
        return await self._blob(path).exists()

    async def get_tags(self, path: str) -> Dict[str, str]:
        try:
            return dict(await self._blob(path).get_blob_tags() or {})
        except ResourceNotFoundError:
            raise NotFound(path)

    async def get_properties(self, path: str) -> BlobInfo:
        blob = self._blob(path)
        try:
            properties = await blob.get_blob_properties()
            tags = await blob.get_blob_tags()
        except ResourceNotFoundError:
            raise NotFound(path)

        settings = properties.content_settings
        md5 = settings.content_md5 if settings else None
        return BlobInfo(
            path=path,
            url=blob.url,
            content_type=settings.content_type if settings else None,
            content_length=properties.size,
            last_modified=properties.last_modified,
            etag=properties.etag,
            content_md5=bytes(md5) if md5 else None,
            metadata=dict(properties.metadata or {}),
            tags=dict(tags or {}),
        )

    async def open_read_stream(self, path: str) -> ReceiptStream:
        blob = self._blob(path)
        try:
            downloader = await blob.download_blob()
        except ResourceNotFoundError:
            raise NotFound(path)

        properties = downloader.properties
        settings = properties.content_settings
        return ReceiptStream(
            path=path,
            content_type=settings.content_type if settings else None,
            size=properties.size,
            downloader=downloader,
        )

    async def verify_integrity(self, path: str) -> bool:
        """Recompute the MD5 of the stored bytes and compare with Content-MD5."""
        blob = self._blob(path)
        try:
            downloader = await blob.download_blob()
            data = await downloader.readall()
        except ResourceNotFoundError:
            raise NotFound(path)

        stored = downloader.properties.content_settings.content_md5
        if not stored:
            logger.warning(f"[VERIFY] {path} has no stored Content-MD5")
            return False
        ok = bytes(stored) == content_md5(data)
        if not ok:
            logger.error(f"[VERIFY] Content-MD5 mismatch for {path}")
        return ok

    # ---------- queries ----------

    async def find_by_tag(self, key: str, value: str, page_size: int = 500) -> AsyncIterator[str]:
        """Yield paths of primary blobs whose tag `key` equals `value`."""
        pages = self.context.primary.find_blobs_by_tags(
            tag_filter(key, value), results_per_page=page_size
        )
        async for item in pages:
            yield item.name

    async def list_untagged(self, key: str = BACKUP_TAG) -> AsyncIterator[Tuple[str, Dict[str, str]]]:
        """Yield (path, metadata) for primary blobs missing tag `key`."""
        async for blob in self.context.primary.list_blobs(include=["tags", "metadata"]):
            if not (blob.tags or {}).get(key):
                yield blob.name, dict(blob.metadata or {})

    # ---------- backup copy ----------

    async def copy(self, source_url: str, dest_path: str) -> CopyResult:
        """
        Copy a blob into the backup container from a URL carrying its own SAS.

        Polls the destination with exponential backoff until the copy leaves
        the 'pending' state or COPY_TIMEOUT_SECONDS of waiting elapse; a timed
        out copy is aborted. Raises CopyFailed for anything but success.
        """
        dest = self.context.backup.get_blob_client(dest_path)
        try:
            started = await dest.start_copy_from_url(source_url)
        except AzureError as e:
            raise CopyFailed(dest_path, COPY_FAILED, str(e)) from e

        result = await self._poll_copy(dest, dest_path, started)
        if not result.ok:
            raise CopyFailed(dest_path, result.status, result.reason)
        return result

    async def _poll_copy(self, dest, dest_path: str, started: dict) -> CopyResult:
        config = self.context.config
        copy_id = started.get("copy_id")
        status = started.get("copy_status")
        reason = None

        waited = 0.0
        interval = config.copy_poll_interval_seconds
        while status == "pending":
            if waited >= config.copy_timeout_seconds:
                await self._abort_copy(dest, dest_path, copy_id)
                return CopyResult(
                    dest_path, COPY_TIMED_OUT, copy_id,
                    reason=f"still pending after {waited:.0f}s",
                )

            delay = min(interval, config.copy_timeout_seconds - waited)
            await self._sleep(delay)
            waited += delay
            interval = min(interval * 2, config.copy_poll_max_interval_seconds)

            try:
                properties = await dest.get_blob_properties()
            except AzureError as e:
                return CopyResult(dest_path, COPY_FAILED, copy_id, reason=str(e))
            status = properties.copy.status
            reason = properties.copy.status_description

        if status == COPY_SUCCESS:
            return CopyResult(dest_path, COPY_SUCCESS, copy_id)
        return CopyResult(dest_path, COPY_FAILED, copy_id, reason=reason or status)

    async def _abort_copy(self, dest, dest_path: str, copy_id: Optional[str]) -> None:
        if not copy_id:
            return
        try:
            await dest.abort_copy(copy_id)
            logger.warning(f"[BACKUP] Aborted pending copy {copy_id} for {dest_path}")
        except AzureError as e:
            logger.warning(f"[BACKUP] Could not abort copy {copy_id} for {dest_path}: {e}")
