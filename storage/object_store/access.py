"""
SAS URL issuance for stored receipts.

Two kinds of grants:
  - expiring: window starts 60s in the past (clock skew) and ends
    expiry_seconds after issuance; permissions come from the letter string
  - permanent: bound to the container's stored access policy, no expiry in
    the URL; revoked for everyone at once by deleting the policy

Issuing is a pure computation over the account key. Nothing here talks to
the store, so a URL for a missing blob is valid until it is dereferenced.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from azure.storage.blob import BlobSasPermissions, generate_blob_sas
from loguru import logger

from storage.context import StorageContext
from storage.errors import InvalidInput, InvalidPermissions

CLOCK_SKEW = timedelta(seconds=60)

# Permission letters a receipt grant may carry
SAS_PERMISSION_LETTERS = "racwd"

EXPIRING = "expiring"
PERMANENT = "permanent"


def parse_permissions(permissions: Optional[str]) -> BlobSasPermissions:
    """Parse a letter string like "r" or "rw" into blob SAS permissions."""
    if not permissions:
        raise InvalidPermissions(permissions or "", "")
    invalid = "".join(sorted({ch for ch in permissions if ch not in SAS_PERMISSION_LETTERS}))
    if invalid:
        raise InvalidPermissions(permissions, invalid)
    return BlobSasPermissions.from_string(permissions)


@dataclass(frozen=True)
class AccessGrant:
    kind: str
    path: str
    url: str
    permissions: Optional[str] = None
    issued_at: Optional[datetime] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    policy_id: Optional[str] = None

    @property
    def expires_in(self) -> Optional[int]:
        if self.kind == PERMANENT:
            return None
        return int((self.expires_at - self.issued_at).total_seconds())

    def to_response(self) -> dict:
        return {"url": self.url, "expiresIn": self.expires_in}


class AccessIssuer:

    def __init__(self, context: StorageContext, clock: Callable[[], datetime] = None):
        self.context = context
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def issue(
        self,
        path: str,
        permissions: Optional[str] = "r",
        expiry_seconds: Optional[int] = None,
        permanent: bool = False,
    ) -> AccessGrant:
        if not path:
            raise InvalidInput("Missing required field: blobPath")
        if permissions is None:
            permissions = "r"
        sas_permissions = parse_permissions(permissions)

        config = self.context.config
        if permanent and config.permanent_policy_id:
            return self._issue_permanent(path, config.permanent_policy_id)

        if permanent:
            logger.warning(
                f"Permanent SAS requested for {path} but no policy is configured; "
                f"issuing an expiring URL instead"
            )
        return self._issue_expiring(path, permissions, sas_permissions, expiry_seconds)

    def _issue_expiring(
        self,
        path: str,
        permissions: str,
        sas_permissions: BlobSasPermissions,
        expiry_seconds: Optional[int],
    ) -> AccessGrant:
        if expiry_seconds is None:
            expiry_seconds = self.context.config.default_expiry_seconds
        if expiry_seconds <= 0:
            raise InvalidInput("expirySeconds must be positive")

        issued_at = self.clock()
        starts_at = issued_at - CLOCK_SKEW
        expires_at = issued_at + timedelta(seconds=expiry_seconds)

        token = generate_blob_sas(
            account_name=self.context.account_name,
            container_name=self.context.primary.container_name,
            blob_name=path,
            account_key=self.context.account_key,
            permission=sas_permissions,
            start=starts_at,
            expiry=expires_at,
            protocol=self.context.config.sas_protocol,
        )
        return AccessGrant(
            kind=EXPIRING,
            path=path,
            url=self._url(path, token),
            permissions=permissions,
            issued_at=issued_at,
            starts_at=starts_at,
            expires_at=expires_at,
        )

    def _issue_permanent(self, path: str, policy_id: str) -> AccessGrant:
        token = generate_blob_sas(
            account_name=self.context.account_name,
            container_name=self.context.primary.container_name,
            blob_name=path,
            account_key=self.context.account_key,
            policy_id=policy_id,
            protocol=self.context.config.sas_protocol,
        )
        return AccessGrant(
            kind=PERMANENT,
            path=path,
            url=self._url(path, token),
            issued_at=self.clock(),
            policy_id=policy_id,
        )

    def _url(self, path: str, token: str) -> str:
        blob_client = self.context.primary.get_blob_client(path)
        return f"{blob_client.url}?{token}"
