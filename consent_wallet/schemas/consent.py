"""Pydantic schemas for the records kept in the durable store.

Field names are snake_case in Python and camelCase on the wire/in storage
(``tokenId``, ``isRevoked``, ``autoDetection`` ...), matching what the page
context and the store already hold.

Timestamps are epoch **milliseconds** everywhere in this module. The ledger
speaks epoch seconds; conversion happens in ``consent_wallet.ledger.client``.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from consent_wallet.models.enums import ConsentStatus, DetectionStatus

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * MS_PER_SECOND)


def to_epoch_ms(value: Any) -> int | None:
    """Normalize an expiry/issue timestamp to epoch milliseconds.

    Accepts ints/floats (already milliseconds), numeric strings, ISO dates
    (``2026-10-20``) and ISO datetimes. Naive dates are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("timestamp cannot be a boolean")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.lstrip("-").isdigit():
            return int(text)
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            msg = f"Unrecognized timestamp: {value!r}"
            raise ValueError(msg) from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * MS_PER_SECOND)


class CamelModel(BaseModel):
    """Base for stored records: camelCase aliases, population by either name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_store(self) -> dict[str, Any]:
        """JSON-ready dict using the camelCase aliases."""
        return self.model_dump(mode="json", by_alias=True)


class ConsentToken(CamelModel):
    """A consent token: ledger-confirmed or speculative (token_id may be None)."""

    token_id: int | None = None
    status: ConsentStatus = ConsentStatus.PENDING
    recipient: str = ""
    purpose: str = ""
    website: str = ""
    data_fields: str = ""
    site_name: str = ""
    issued_at: int | None = None
    expiry_date: int | None = None
    revoked_at: int | None = None
    is_revoked: bool = False

    # Normalized account this record was read for (None for background-created records)
    owner: str | None = None
    # True when token_id was synthesized by the legacy enumeration: not authoritative
    id_synthesized: bool = False

    @field_validator("issued_at", "expiry_date", "revoked_at", mode="before")
    @classmethod
    def normalize_timestamps(cls, v: Any) -> int | None:
        """Store every timestamp as epoch milliseconds."""
        return to_epoch_ms(v)

    @model_validator(mode="after")
    def sync_revoked_flag(self) -> ConsentToken:
        """Keep ``is_revoked`` and ``status`` in agreement."""
        if self.is_revoked and self.status != ConsentStatus.REVOKED:
            self.status = ConsentStatus.REVOKED
        elif self.status == ConsentStatus.REVOKED:
            self.is_revoked = True
        return self


class DetectionEvent(CamelModel):
    """Evidence that a page asked for consent. Append-only, never mutated."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    timestamp: int
    url: str | None = None
    tab_id: int | None = None
    consent_data: dict[str, Any] = Field(default_factory=dict)
    status: DetectionStatus = DetectionStatus.DETECTED


class WalletSettings(CamelModel):
    """User-facing toggles stored under the ``settings`` key."""

    auto_detection: bool = True
    notifications: bool = True
    expiry_reminders: bool = True
