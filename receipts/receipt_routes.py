import os
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from loguru import logger

from backup.scheduler import BackupScheduler
from receipts.schemas import (
    BackupRunResponse,
    ReceiptInfoResponse,
    SignedUrlRequest,
    SignedUrlResponse,
    UploadResponse,
    VerifyResponse,
)
from storage.errors import InvalidInput, NotFound
from storage.object_store.access import AccessIssuer
from storage.object_store.buckets import ObjectStore

# ============================================
# CONFIGURATION
# ============================================

router = APIRouter(prefix="/receipts", tags=["receipts"])

ALLOWED_UPLOAD_TYPES = {"application/pdf", "application/octet-stream"}
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def get_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def get_issuer(request: Request) -> AccessIssuer:
    return request.app.state.access_issuer


def get_scheduler(request: Request) -> BackupScheduler:
    return request.app.state.backup_scheduler


def get_max_upload_bytes(request: Request) -> int:
    return getattr(request.app.state, "max_upload_bytes", None) or int(
        os.getenv("MAX_UPLOAD_BYTES", str(DEFAULT_MAX_UPLOAD_BYTES))
    )


def _http_error(tag: str, e: Exception) -> HTTPException:
    """Map storage errors onto HTTP status codes."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, NotFound):
        logger.warning(f"[{tag}] {e}")
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidInput):
        logger.warning(f"[{tag}] {e}")
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"[{tag}] Error: {e}")
    return HTTPException(status_code=400, detail=str(e) or "Request failed")


def _too_large(max_upload_bytes: int) -> HTTPException:
    return HTTPException(status_code=413, detail=f"File exceeds the {max_upload_bytes} byte limit")


def _require_path(blob_path: Optional[str]) -> str:
    if not blob_path:
        raise InvalidInput("Missing required field: blobPath")
    return blob_path


# ============================================
# ROUTES
# ============================================

@router.post("/upload", response_model=UploadResponse)
async def upload_receipt(
    file: Optional[UploadFile] = File(None),
    client_id: Optional[str] = Form(None, alias="clientId"),
    pos_id: Optional[str] = Form(None, alias="posId"),
    date_iso: Optional[str] = Form(None, alias="dateISO"),
    receipt_id: Optional[str] = Form(None, alias="receiptId"),
    store: ObjectStore = Depends(get_store),
    max_upload_bytes: int = Depends(get_max_upload_bytes),
):
    """
    Upload one PDF receipt (multipart/form-data).
    The receipt is stored under client/{clientId}/{yyyy}/{mm}/{dd}/{posId}/{receiptId}.pdf
    and tagged for the next backup cycle.
    """
    try:
        if file is None:
            raise InvalidInput("No file uploaded")
        if file.content_type not in ALLOWED_UPLOAD_TYPES:
            raise InvalidInput("Only PDF files are allowed")

        # size is None when the part length was not recorded
        if file.size is not None and file.size > max_upload_bytes:
            raise _too_large(max_upload_bytes)
        data = await file.read(max_upload_bytes + 1)
        if len(data) > max_upload_bytes:
            raise _too_large(max_upload_bytes)

        blob_path = await store.put(
            data,
            client_id=client_id,
            pos_id=pos_id,
            date_iso=date_iso,
            receipt_id=receipt_id,
        )
        return {"ok": True, "blobPath": blob_path}

    except Exception as e:
        raise _http_error("UPLOAD", e)
    finally:
        if file is not None:
            await file.close()


@router.post("/signed-url", response_model=SignedUrlResponse)
async def signed_url(
    body: SignedUrlRequest,
    issuer: AccessIssuer = Depends(get_issuer),
):
    """Issue an expiring or permanent read URL for a stored receipt."""
    try:
        grant = issuer.issue(
            body.blob_path,
            permissions="r" if body.permissions is None else body.permissions,
            expiry_seconds=body.expiry_seconds,
            permanent=bool(body.permanent),
        )
        logger.info(f"[SAS] Issued {grant.kind} URL for {grant.path}")
        return grant.to_response()
    except Exception as e:
        raise _http_error("SAS", e)


@router.get("/download")
async def download_receipt(
    blob_path: Optional[str] = Query(None, alias="blobPath"),
    attachment: bool = Query(False),
    store: ObjectStore = Depends(get_store),
):
    """Stream a receipt, inline by default or as an attachment."""
    try:
        stream = await store.open_read_stream(_require_path(blob_path))
        logger.info(f"[DOWNLOAD] Streaming {stream.path} ({stream.size} bytes)")
    except Exception as e:
        raise _http_error("DOWNLOAD", e)

    return StreamingResponse(
        stream.iter_chunks(),
        media_type=stream.content_type,
        headers={
            "Content-Disposition": stream.content_disposition(attachment),
            "X-Content-Type-Options": "nosniff",
        },
    )


@router.get("/info", response_model=ReceiptInfoResponse)
async def receipt_info(
    blob_path: Optional[str] = Query(None, alias="blobPath"),
    store: ObjectStore = Depends(get_store),
):
    try:
        info = await store.get_properties(_require_path(blob_path))
        return info.to_dict()
    except Exception as e:
        raise _http_error("INFO", e)


@router.get("/verify", response_model=VerifyResponse)
async def verify_receipt(
    blob_path: Optional[str] = Query(None, alias="blobPath"),
    store: ObjectStore = Depends(get_store),
):
    """Recompute the MD5 of the stored receipt and compare it with Content-MD5."""
    try:
        path = _require_path(blob_path)
        return {"blobPath": path, "ok": await store.verify_integrity(path)}
    except Exception as e:
        raise _http_error("VERIFY", e)


@router.post("/backup/run", response_model=BackupRunResponse)
async def run_backup(scheduler: BackupScheduler = Depends(get_scheduler)):
    """Run one backup cycle now (operators)."""
    report = await scheduler.run_cycle()
    if report is None:
        raise HTTPException(status_code=409, detail="Backup cycle already running")
    return report.to_dict()
