"""
Shared-secret API key gate for the receipt routes.

Features:
  - Keys come from API_KEYS (comma separated)
  - Clients send the key in the x-api-key header
  - Constant-time comparison against every configured key
  - No keys configured = open mode (gate disabled, logged once at startup)

Usage:
  gate = APIKeyGate.from_env()
  router = APIRouter(dependencies=[Depends(gate)])
"""

import hmac
import os
from typing import Iterable, List, Optional

from fastapi import Header, HTTPException
from loguru import logger


def parse_api_keys(raw: Optional[str]) -> List[str]:
    return [key.strip() for key in (raw or "").split(",") if key.strip()]


class APIKeyGate:
    """FastAPI dependency that rejects requests without a valid x-api-key"""

    def __init__(self, allowed_keys: Iterable[str] = ()):
        self.allowed_keys = [key for key in allowed_keys if key]
        if self.open_mode:
            logger.warning("⚠️  API_KEYS not configured - receipt routes are open")

    @classmethod
    def from_env(cls) -> "APIKeyGate":
        return cls(parse_api_keys(os.getenv("API_KEYS")))

    @property
    def open_mode(self) -> bool:
        return not self.allowed_keys

    def is_allowed(self, key: Optional[str]) -> bool:
        if self.open_mode:
            return True
        if not key:
            return False
        return any(hmac.compare_digest(key.encode(), allowed.encode()) for allowed in self.allowed_keys)

    async def __call__(self, x_api_key: Optional[str] = Header(None)) -> Optional[str]:
        if not self.is_allowed(x_api_key):
            logger.warning("Rejected request with missing or invalid API key")
            raise HTTPException(status_code=401, detail="Unauthorized")
        return x_api_key
