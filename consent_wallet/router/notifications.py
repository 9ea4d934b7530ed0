"""User notifications: templates and delivery.

Decoupled from any UI via ``set_send_fn()``: the notifier formats the
message for a notification kind and hands it to whatever async send function
was injected (a desktop notifier, a websocket push ...). Without one the
notification is only logged and kept in the recent history.

Never raises: delivery failures are logged and swallowed.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from consent_wallet.models.enums import NotificationKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationTemplate:
    title: str
    template: str  # format string using the notify() keyword fields
    actions: tuple[str, ...] = ()


TEMPLATES: dict[NotificationKind, NotificationTemplate] = {
    NotificationKind.CONSENT_DETECTED: NotificationTemplate(
        title="Consent Detected",
        template="Privacy consent detected on {site_name}",
    ),
    NotificationKind.CONSENT_ISSUED: NotificationTemplate(
        title="Consent Token Issued",
        template="Blockchain consent token created for {site_name}",
    ),
    NotificationKind.CONSENT_REVOKED: NotificationTemplate(
        title="Consent Revoked",
        template="Consent token revoked for {site_name}",
    ),
    NotificationKind.EXPIRY_APPROACHING: NotificationTemplate(
        title="Consent Expiring Soon",
        template="Your consent for {site_name} expires in 24 hours. Renew or revoke?",
        actions=("Renew", "Revoke"),
    ),
}


class Notification(BaseModel):
    """A user-visible alert."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: NotificationKind
    title: str
    message: str
    actions: list[str] = Field(default_factory=list)
    token_id: int | None = None


SendFn = Callable[[Notification], Coroutine[Any, Any, None]]


class _SafeDict(dict):
    def __missing__(self, key: str) -> str:
        return "?"


class Notifier:
    """Formats and delivers notifications; keeps a short history."""

    def __init__(self, history_size: int = 100) -> None:
        self._send_fn: SendFn | None = None
        self.history: deque[Notification] = deque(maxlen=history_size)

    def set_send_fn(self, fn: SendFn) -> None:
        self._send_fn = fn

    async def notify(self, kind: NotificationKind, token_id: int | None = None, **fields: Any) -> Notification:
        tpl = TEMPLATES[kind]
        notification = Notification(
            kind=kind,
            title=tpl.title,
            message=tpl.template.format_map(_SafeDict(fields)),
            actions=list(tpl.actions),
            token_id=token_id,
        )
        self.history.append(notification)
        logger.info("Notification [%s]: %s", notification.title, notification.message)

        if self._send_fn is not None:
            try:
                await self._send_fn(notification)
            except Exception:
                logger.exception("Failed to deliver notification %s", kind.value)
        return notification
