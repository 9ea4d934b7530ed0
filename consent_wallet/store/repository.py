"""Typed access to the durable store keys.

The token collection is read-modify-written as a whole, so every writer goes
through ``edit_tokens()`` which holds a process-local lock for the entire
read → mutate → write span. Two handlers interleaving at the store's await
points would otherwise lose an update.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from consent_wallet.schemas.consent import ConsentToken, DetectionEvent, WalletSettings
from consent_wallet.store.engine import DurableStore

logger = logging.getLogger(__name__)

TOKENS_KEY = "consentTokens"
DETECTIONS_KEY = "detections"
SETTINGS_KEY = "settings"


class ConsentRepository:
    """Serialized accessors for consent tokens, detections and wallet settings."""

    def __init__(self, store: DurableStore) -> None:
        self._store = store
        self._tokens_lock = asyncio.Lock()
        self._detections_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Seed empty collections and default settings. No-op for keys already present."""
        async with self._tokens_lock:
            if await self._store.get(TOKENS_KEY) is None:
                await self._store.set(TOKENS_KEY, [])
                logger.info("Initialized empty %s", TOKENS_KEY)
        if await self._store.get(SETTINGS_KEY) is None:
            await self._store.set(SETTINGS_KEY, WalletSettings().to_store())
            logger.info("Initialized default %s", SETTINGS_KEY)

    # ── Settings ─────────────────────────────────────────────────────

    async def get_settings(self) -> WalletSettings:
        raw = await self._store.get(SETTINGS_KEY)
        if raw is None:
            return WalletSettings()
        return WalletSettings.model_validate(raw)

    async def save_settings(self, wallet_settings: WalletSettings) -> None:
        await self._store.set(SETTINGS_KEY, wallet_settings.to_store())

    # ── Tokens ───────────────────────────────────────────────────────

    async def list_tokens(self) -> list[ConsentToken]:
        """Return the stored collection in stored order."""
        raw = await self._store.get(TOKENS_KEY) or []
        return [ConsentToken.model_validate(item) for item in raw]

    async def get_token(self, token_id: int) -> ConsentToken | None:
        for token in await self.list_tokens():
            if token.token_id == token_id:
                return token
        return None

    @contextlib.asynccontextmanager
    async def edit_tokens(self) -> AsyncIterator[list[ConsentToken]]:
        """Hold the token lock, yield the mutable collection, write it back.

        The write is skipped if the body raises.

        Usage:
            async with repo.edit_tokens() as tokens:
                tokens.append(token)
        """
        async with self._tokens_lock:
            tokens = await self.list_tokens()
            yield tokens
            await self._store.set(TOKENS_KEY, [t.to_store() for t in tokens])

    # ── Detections ───────────────────────────────────────────────────

    async def append_detection(self, detection: DetectionEvent) -> None:
        async with self._detections_lock:
            detections = await self._store.get(DETECTIONS_KEY) or []
            detections.append(detection.to_store())
            await self._store.set(DETECTIONS_KEY, detections)

    async def list_detections(self) -> list[DetectionEvent]:
        raw = await self._store.get(DETECTIONS_KEY) or []
        return [DetectionEvent.model_validate(item) for item in raw]
