"""
Deterministic blob paths for receipts.

  client/{clientId}/{yyyy}/{mm}/{dd}/{posId}/{receiptId}.pdf

The date component is always the UTC calendar day. A receipt id is generated
(uuid4) only when the caller does not supply one, and only once: resolve()
pins both defaults so the same key always yields the same path.
"""

import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Callable, Optional

from storage.errors import InvalidInput

PATH_TEMPLATE = "client/{client_id}/{yyyy:04d}/{mm:02d}/{dd:02d}/{pos_id}/{receipt_id}.pdf"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_receipt_date(date_iso: Optional[str], clock: Callable[[], datetime] = _utcnow) -> date:
    """Return the UTC calendar day for an ISO-8601 date or datetime string."""
    if not date_iso:
        return clock().astimezone(timezone.utc).date()

    value = date_iso.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise InvalidInput(f"Invalid dateISO: {date_iso}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).date()


def _check_identifier(name: str, value: Optional[str]) -> None:
    if not value:
        raise InvalidInput(f"Missing required field: {name}")
    if "/" in value:
        raise InvalidInput(f"{name} must not contain '/'")


@dataclass(frozen=True)
class ReceiptKey:
    """Identity of one stored receipt."""
    client_id: str
    pos_id: str
    receipt_date: Optional[date] = None
    receipt_id: Optional[str] = None

    @classmethod
    def from_request(
        cls,
        client_id: Optional[str],
        pos_id: Optional[str],
        date_iso: Optional[str] = None,
        receipt_id: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> "ReceiptKey":
        _check_identifier("clientId", client_id)
        _check_identifier("posId", pos_id)
        if receipt_id is not None and receipt_id != "":
            _check_identifier("receiptId", receipt_id)
        return cls(
            client_id=client_id,
            pos_id=pos_id,
            receipt_date=parse_receipt_date(date_iso, clock),
            receipt_id=receipt_id or None,
        ).resolve(clock)

    def resolve(self, clock: Callable[[], datetime] = _utcnow) -> "ReceiptKey":
        """Fill in today's date and a fresh receipt id where missing."""
        if self.receipt_date is not None and self.receipt_id is not None:
            return self
        return replace(
            self,
            receipt_date=self.receipt_date or clock().astimezone(timezone.utc).date(),
            receipt_id=self.receipt_id or str(uuid.uuid4()),
        )

    @property
    def path(self) -> str:
        if self.receipt_date is None or self.receipt_id is None:
            raise ValueError("ReceiptKey must be resolved before building a path")
        return PATH_TEMPLATE.format(
            client_id=self.client_id,
            pos_id=self.pos_id,
            yyyy=self.receipt_date.year,
            mm=self.receipt_date.month,
            dd=self.receipt_date.day,
            receipt_id=self.receipt_id,
        )

    @property
    def filename(self) -> str:
        return f"{self.receipt_id}.pdf"


def build_path(
    client_id: str,
    pos_id: str,
    date_iso: Optional[str] = None,
    receipt_id: Optional[str] = None,
) -> str:
    return ReceiptKey.from_request(client_id, pos_id, date_iso, receipt_id).path


def filename_from_path(path: str) -> str:
    return path.rsplit("/", 1)[-1]
