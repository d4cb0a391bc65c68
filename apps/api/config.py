"""
Gateway configuration (HTTP surface, auth gate, backup cadence, logging).

Storage credentials and container names live in storage.config.StorageConfig.
"""

import os
from typing import List

import dotenv
from loguru import logger

from security.auth.api_keys import parse_api_keys

dotenv.load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


class GatewayConfig:
    """Configuration for the receipt gateway process"""

    def __init__(self):
        self.host = os.getenv("HOST", "0.0.0.0")
        self.port = int(os.getenv("PORT", "4004"))

        # Empty = allow every origin
        self.allow_origins = _env_list("ALLOW_ORIGINS")
        # Empty = open mode
        self.api_keys = parse_api_keys(os.getenv("API_KEYS"))

        self.max_upload_bytes = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

        self.bootstrap_storage = _env_bool("STORAGE_BOOTSTRAP", "true")
        self.backup_enabled = _env_bool("BACKUP_ENABLED", "true")
        self.backup_interval_seconds = int(os.getenv("BACKUP_INTERVAL_SECONDS", "3600"))
        self.backup_offset_seconds = int(os.getenv("BACKUP_OFFSET_SECONDS", "600"))
        self.backup_sweep_orphans = _env_bool("BACKUP_SWEEP_ORPHANS", "false")

        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.log_json = _env_bool("LOG_JSON", "false")

        logger.debug(
            f"Gateway config: port={self.port}, origins={self.allow_origins or '*'}, "
            f"api_keys={len(self.api_keys)}, backup_enabled={self.backup_enabled}"
        )
