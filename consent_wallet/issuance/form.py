"""Issuance flow: turns an ``/issue?...`` link into a minted consent token.

Sites (or the page bridge, after a detection) send the user to

    /issue?to=0x..&website=..&purpose=..&fields=email,name&privacyUrl=..
          &sourceUrl=..&returnUrl=..&expiryDate=2026-12-31

The query is parsed into an ``IssueFormState``. Submitting validates it in a
fixed order and mints through the ledger client. Every failure reaches the
user as a single-line message (``IssuanceError``).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from urllib.parse import parse_qs, urlparse

from pydantic import BaseModel, Field

from consent_wallet.ledger.addresses import canonical_address
from consent_wallet.ledger.client import LedgerClient
from consent_wallet.schemas.ledger import ConsentFormData, MintResult

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT = "/my-consents"
ISSUE_FAILED_MESSAGE = "Failed to issue consent token. Please try again."


class IssuanceError(Exception):
    """A user-facing, single-line issuance failure."""


class IssueFormState(BaseModel):
    """Form fields pre-filled from the issue link."""

    recipient: str = ""
    purpose: str = ""
    fields: list[str] = Field(default_factory=list)
    privacy_url: str = ""
    source_url: str = ""
    site_name: str = ""
    website_url: str = ""
    expiry_date: str = ""
    return_url: str = ""

    def to_form_data(self) -> ConsentFormData:
        return ConsentFormData(
            recipient=self.recipient,
            purpose=self.purpose,
            expiry_date=self.expiry_date,
            website=self.website_url or self.source_url or self.site_name,
            data_fields=", ".join(self.fields),
        )


class IssueResult(BaseModel):
    mint: MintResult
    redirect_url: str


def parse_fields(raw: str | None) -> list[str]:
    """CSV → trimmed, non-empty field names."""
    if not raw:
        return []
    return [field.strip() for field in raw.split(",") if field.strip()]


def parse_issue_params(params: Mapping[str, str]) -> IssueFormState:
    """Build form state from already-decoded query parameters."""
    to = params.get("to")
    source_url = params.get("sourceUrl") or ""
    return IssueFormState(
        recipient=canonical_address(to) if to else "",
        purpose=params.get("purpose") or "",
        fields=parse_fields(params.get("fields")),
        privacy_url=params.get("privacyUrl") or "",
        source_url=source_url,
        site_name=params.get("siteName") or params.get("site") or params.get("serviceName") or "",
        website_url=params.get("websiteUrl") or params.get("website") or source_url,
        expiry_date=params.get("expiryDate") or "",
        return_url=params.get("returnUrl") or "",
    )


def parse_issue_url(url: str) -> IssueFormState:
    """Parse a full ``/issue?...`` URL (first value wins for repeated keys)."""
    query = parse_qs(urlparse(url).query, keep_blank_values=True)
    return parse_issue_params({key: values[0] for key, values in query.items() if values})


def validate_issue_form(form: IssueFormState, ledger: LedgerClient) -> None:
    """Raise IssuanceError for the first failing check, in display order."""
    if not ledger.account:
        raise IssuanceError("Please connect your wallet first")
    if not ledger.is_correct_network:
        raise IssuanceError(f"Please switch to {ledger.network_name}")
    if not form.recipient or not form.purpose or not form.fields:
        raise IssuanceError("Please fill in all required fields")
    if not form.expiry_date:
        raise IssuanceError("Please select an expiry date")


async def submit_issue_form(form: IssueFormState, ledger: LedgerClient) -> IssueResult:
    """Validate, mint, and tell the caller where to send the user next."""
    validate_issue_form(form, ledger)
    try:
        mint = await ledger.mint(form.to_form_data())
    except Exception as exc:
        logger.error("Consent issuance error: %s", exc)
        raise IssuanceError(ISSUE_FAILED_MESSAGE) from exc

    logger.info("Consent issued (token=%s), redirecting", mint.token_id)
    return IssueResult(mint=mint, redirect_url=form.return_url or DEFAULT_REDIRECT)
