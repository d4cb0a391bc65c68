"""
Pydantic schemas for the receipt API.

Field names are snake_case in Python and camelCase on the wire, matching what
POS clients already send (blobPath, expirySeconds, ...).
"""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============ Request Schemas ============

class SignedUrlRequest(CamelModel):
    """
    Request a SAS URL for a stored receipt.

    Example:
        {
            "blobPath": "client/acme/2024/03/05/till-1/7f0c....pdf",
            "expirySeconds": 600,
            "permissions": "r",
            "permanent": false
        }
    """
    blob_path: str = Field(..., alias="blobPath", min_length=1, description="Blob path returned by upload")
    expiry_seconds: Optional[int] = Field(
        None,
        alias="expirySeconds",
        description="Lifetime of an expiring URL (default SAS_DEFAULT_EXPIRY_SECONDS)",
    )
    permissions: Optional[str] = Field("r", description="SAS permission letters, e.g. 'r'")
    permanent: Optional[bool] = Field(False, description="Bind to the stored access policy instead of expiring")

    @field_validator("expiry_seconds")
    def validate_expiry(cls, v):
        # 0 means "use the default", as older clients send it
        if v is not None and v < 0:
            raise ValueError("expirySeconds must not be negative")
        return v or None


# ============ Response Schemas ============

class UploadResponse(CamelModel):
    ok: bool = True
    blob_path: str = Field(..., alias="blobPath")


class SignedUrlResponse(CamelModel):
    url: str
    expires_in: Optional[int] = Field(None, alias="expiresIn")


class ReceiptProperties(CamelModel):
    content_type: Optional[str] = Field(None, alias="contentType")
    content_length: Optional[int] = Field(None, alias="contentLength")
    last_modified: Optional[str] = Field(None, alias="lastModified")
    etag: Optional[str] = Field(None, alias="eTag")
    content_md5: Optional[str] = Field(None, alias="contentMD5")


class ReceiptInfoResponse(CamelModel):
    url: str
    properties: ReceiptProperties
    metadata: Dict[str, str] = Field(default_factory=dict)
    tags: Dict[str, str] = Field(default_factory=dict)


class VerifyResponse(CamelModel):
    blob_path: str = Field(..., alias="blobPath")
    ok: bool


class BackupRunResponse(CamelModel):
    started_at: str = Field(..., alias="startedAt")
    finished_at: Optional[str] = Field(None, alias="finishedAt")
    discovered: int = 0
    copied: int = 0
    failed: int = 0
    retagged: int = 0
    failures: Dict[str, str] = Field(default_factory=dict)
    error: Optional[str] = None
