"""
Storage configuration read from the environment.

Credentials:
  - AZURE_STORAGE_CONNECTION_STRING, or
  - AZURE_STORAGE_ACCOUNT_NAME + AZURE_STORAGE_ACCOUNT_KEY

Containers:
  - AZURE_STORAGE_CONTAINER (primary, default "receipts")
  - AZURE_BACKUP_CONTAINER (backup, default "receipts-backup")

Signed URLs:
  - PERMANENT_SAS_POLICY_ID (default "permanent-read", empty disables permanent grants)
  - SAS_DEFAULT_EXPIRY_SECONDS (default 3600)
  - SAS_PROTOCOL (default "https")

Backup copy polling:
  - COPY_TIMEOUT_SECONDS, COPY_POLL_INTERVAL_SECONDS, COPY_POLL_MAX_INTERVAL_SECONDS
"""

import os
from typing import Dict, Optional

import dotenv
from loguru import logger

dotenv.load_dotenv()


def parse_connection_string(connection_string: str) -> Dict[str, str]:
    """Split an Azure connection string into its key/value parts."""
    parts = {}
    for segment in connection_string.split(";"):
        segment = segment.strip()
        if not segment or "=" not in segment:
            continue
        key, value = segment.split("=", 1)
        parts[key.strip()] = value.strip()
    return parts


class StorageConfig:
    """Configuration for the primary and backup containers"""

    def __init__(
        self,
        connection_string: Optional[str] = None,
        account_name: Optional[str] = None,
        account_key: Optional[str] = None,
        container_name: Optional[str] = None,
        backup_container_name: Optional[str] = None,
        permanent_policy_id: Optional[str] = None,
        default_expiry_seconds: Optional[int] = None,
    ):
        self.connection_string = connection_string or os.getenv("AZURE_STORAGE_CONNECTION_STRING")
        self.account_name = account_name or os.getenv("AZURE_STORAGE_ACCOUNT_NAME")
        self.account_key = account_key or os.getenv("AZURE_STORAGE_ACCOUNT_KEY")

        # Account name/key are needed to sign SAS tokens, so pull them out of
        # the connection string when only that is configured.
        if self.connection_string:
            parts = parse_connection_string(self.connection_string)
            self.account_name = self.account_name or parts.get("AccountName")
            self.account_key = self.account_key or parts.get("AccountKey")

        self.container_name = container_name or os.getenv("AZURE_STORAGE_CONTAINER", "receipts")
        self.backup_container_name = backup_container_name or os.getenv(
            "AZURE_BACKUP_CONTAINER", "receipts-backup"
        )

        if permanent_policy_id is None:
            permanent_policy_id = os.getenv("PERMANENT_SAS_POLICY_ID", "permanent-read")
        self.permanent_policy_id = permanent_policy_id or None

        self.default_expiry_seconds = default_expiry_seconds or int(
            os.getenv("SAS_DEFAULT_EXPIRY_SECONDS", "3600")
        )
        self.sas_protocol = os.getenv("SAS_PROTOCOL", "https")

        self.copy_timeout_seconds = float(os.getenv("COPY_TIMEOUT_SECONDS", "300"))
        self.copy_poll_interval_seconds = float(os.getenv("COPY_POLL_INTERVAL_SECONDS", "1"))
        self.copy_poll_max_interval_seconds = float(os.getenv("COPY_POLL_MAX_INTERVAL_SECONDS", "10"))

        logger.info(
            f"Storage config: container={self.container_name}, "
            f"backup={self.backup_container_name}, "
            f"permanent_policy={self.permanent_policy_id or 'disabled'}"
        )

    @property
    def account_url(self) -> str:
        return f"https://{self.account_name}.blob.core.windows.net"

    def validate(self) -> None:
        """Fail fast when no usable credentials are configured."""
        if not self.connection_string and not (self.account_name and self.account_key):
            raise ValueError(
                "Azure credentials missing. Set AZURE_STORAGE_CONNECTION_STRING "
                "or AZURE_STORAGE_ACCOUNT_NAME/AZURE_STORAGE_ACCOUNT_KEY."
            )
        if not self.account_key:
            raise ValueError("AZURE_STORAGE_ACCOUNT_KEY is required to sign SAS URLs")
        if self.default_expiry_seconds <= 0:
            raise ValueError("SAS_DEFAULT_EXPIRY_SECONDS must be positive")
