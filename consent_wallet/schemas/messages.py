"""Inbound message protocol for the background router.

Every message is ``{action, data?, tokenId?}``. The six known actions form a
closed, discriminated union; anything else parses to ``UnknownMessage`` so the
router can ignore it explicitly (the channel is shared with unrelated traffic).
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from consent_wallet.models.enums import ConsentStatus, MessageAction
from consent_wallet.schemas.consent import to_epoch_ms


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ── Payloads ─────────────────────────────────────────────────────────


class ConsentDetectedData(_Payload):
    """What the page scan found."""

    site_name: str = ""
    data_types: list[str] = Field(default_factory=list)
    purpose: str = ""
    recipient_address: str = ""
    privacy_policy_url: str | None = None


class ConsentIssuedData(_Payload):
    """Sent by the page after a mint is confirmed and its token id recovered."""

    token_id: int
    status: ConsentStatus = ConsentStatus.PENDING
    site_name: str = ""
    purpose: str = ""
    expiry_date: int | None = None
    recipient: str = ""
    data_fields: str = ""

    @field_validator("expiry_date", mode="before")
    @classmethod
    def normalize_expiry(cls, v: Any) -> int | None:
        return to_epoch_ms(v)


class ConsentRevokedData(_Payload):
    token_id: int
    site_name: str = ""


class ExpiryReminderData(_Payload):
    token_id: int
    expiry_date: int | None = None

    @field_validator("expiry_date", mode="before")
    @classmethod
    def normalize_expiry(cls, v: Any) -> int | None:
        return to_epoch_ms(v)


# ── Messages ─────────────────────────────────────────────────────────


class ConsentDetectedMessage(_Payload):
    action: Literal["consentDetected"]
    data: ConsentDetectedData = Field(default_factory=ConsentDetectedData)


class ConsentIssuedMessage(_Payload):
    action: Literal["consentIssued"]
    data: ConsentIssuedData | None = None


class ConsentRevokedMessage(_Payload):
    action: Literal["consentRevoked"]
    data: ConsentRevokedData


class GetConsentTokensMessage(_Payload):
    action: Literal["getConsentTokens"]


class ScheduleExpiryReminderMessage(_Payload):
    action: Literal["scheduleExpiryReminder"]
    data: ExpiryReminderData


class ActivateConsentMessage(_Payload):
    action: Literal["activateConsent"]
    token_id: int | None = None


class UnknownMessage(BaseModel):
    """Anything whose action is not one of the six known kinds."""

    action: Any = None
    raw: dict[str, Any] = Field(default_factory=dict)


RouterMessage = Annotated[
    Union[
        ConsentDetectedMessage,
        ConsentIssuedMessage,
        ConsentRevokedMessage,
        GetConsentTokensMessage,
        ScheduleExpiryReminderMessage,
        ActivateConsentMessage,
    ],
    Field(discriminator="action"),
]

_router_message_adapter: TypeAdapter[Any] = TypeAdapter(RouterMessage)

KNOWN_ACTIONS: frozenset[str] = frozenset(a.value for a in MessageAction)


def parse_message(raw: Any) -> BaseModel:
    """Parse a raw inbound message into its typed form.

    Returns ``UnknownMessage`` for non-dict input or an unrecognized action.
    Raises ``pydantic.ValidationError`` when a known action carries a
    malformed payload.
    """
    if not isinstance(raw, dict):
        return UnknownMessage(action=None, raw={})
    action = raw.get("action")
    if action not in KNOWN_ACTIONS:
        return UnknownMessage(action=action, raw=raw)
    return _router_message_adapter.validate_python(raw)


class MessageSender(BaseModel):
    """The tab a message came from, if any."""

    tab_id: int | None = None
    url: str | None = None
