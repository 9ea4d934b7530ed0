"""Pydantic schemas for the ledger boundary.

Timestamps here are epoch **seconds**, as the contract stores them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LedgerConsentRecord(BaseModel):
    """One consent struct as returned by ``getMyConsents``/``getMyConsentsWithIds``.

    ``status`` is None for legacy deployments whose struct has no status field.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    recipient: str = ""
    purpose: str = ""
    expiry_date: int = Field(default=0, alias="expiryDate")
    is_revoked: bool = Field(default=False, alias="isRevoked")
    website: str = ""
    data_fields: str = Field(default="", alias="dataFields")
    status: int | None = None
    issued_at: int = Field(default=0, alias="issuedAt")


class PendingTransaction(BaseModel):
    """Handle returned by a submitted (not yet confirmed) transaction."""

    tx_hash: str
    function: str


class TransactionReceipt(BaseModel):
    """Confirmed transaction with its raw log entries."""

    tx_hash: str
    status: int = 1
    block_number: int | None = None
    logs: list[Any] = Field(default_factory=list)


class ConsentFormData(BaseModel):
    """Everything ``mintConsent`` needs. ``expiry_date`` is an ISO date or datetime string."""

    recipient: str
    purpose: str
    expiry_date: str
    website: str = ""
    data_fields: str = ""


class MintResult(BaseModel):
    tx_hash: str
    token_id: int | None = None


class ContractErrorState(BaseModel):
    """Persistent read-path error surfaced passively to the UI as a banner."""

    kind: str
    message: str
