"""HTTP surface over the background process and the issuance page.

The service container lives on ``app.state.service`` (set in the lifespan).
"""
# ruff: noqa: B008

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from consent_wallet.issuance.form import (
    IssuanceError,
    IssueFormState,
    parse_issue_url,
    submit_issue_form,
)
from consent_wallet.schemas.messages import MessageSender
from consent_wallet.service import ConsentWalletService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["wallet"])


class MessageEnvelope(BaseModel):
    message: Any
    sender: MessageSender | None = None


class TabUpdate(BaseModel):
    status: str
    url: str | None = None


class ConnectRequest(BaseModel):
    account: str


def get_service(request: Request) -> ConsentWalletService:
    service: ConsentWalletService | None = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not started")
    return service


# ── Background process ───────────────────────────────────────────────


@router.post("/messages")
async def post_message(
    envelope: MessageEnvelope, service: ConsentWalletService = Depends(get_service)
) -> dict[str, Any]:
    """Deliver one runtime message to the router."""
    response = await service.router.handle_message(envelope.message, envelope.sender)
    return {"response": response}


@router.post("/tabs/{tab_id}/updated")
async def tab_updated(
    tab_id: int, update: TabUpdate, service: ConsentWalletService = Depends(get_service)
) -> dict[str, bool]:
    scheduled = await service.router.handle_tab_updated(tab_id, update.status, update.url)
    return {"scanScheduled": scheduled}


@router.get("/detections")
async def list_detections(service: ConsentWalletService = Depends(get_service)) -> list[dict[str, Any]]:
    detections = await service.repository.list_detections()
    return [d.to_store() for d in detections]


@router.get("/notifications")
async def list_notifications(service: ConsentWalletService = Depends(get_service)) -> list[dict[str, Any]]:
    return [n.model_dump(mode="json") for n in service.notifier.history]


# ── Ledger ───────────────────────────────────────────────────────────


@router.post("/wallet/connect")
async def connect_wallet(
    body: ConnectRequest, service: ConsentWalletService = Depends(get_service)
) -> JSONResponse:
    connected = await service.ledger.connect(body.account)
    return JSONResponse(
        status_code=200 if connected else 502,
        content={
            "connected": connected,
            "chainId": service.ledger.chain_id,
            "isCorrectNetwork": service.ledger.is_correct_network,
            "contractError": service.ledger.contract_error.message if service.ledger.contract_error else None,
        },
    )


@router.get("/consents")
async def list_consents(service: ConsentWalletService = Depends(get_service)) -> dict[str, Any]:
    """Local cache plus the contract error banner, if any."""
    tokens = await service.reconciler.list_tokens()
    error = service.ledger.contract_error
    return {
        "tokens": [t.to_store() for t in tokens],
        "contractError": error.model_dump(mode="json") if error else None,
        "loading": service.ledger.loading,
    }


@router.post("/consents/refresh")
async def refresh_consents(service: ConsentWalletService = Depends(get_service)) -> dict[str, Any]:
    tokens = await service.ledger.fetch_consents()
    error = service.ledger.contract_error
    return {
        "refreshed": tokens is not None,
        "contractError": error.model_dump(mode="json") if error else None,
    }


# ── Issuance page ────────────────────────────────────────────────────


@router.get("/issue")
async def issue_form(request: Request) -> dict[str, Any]:
    """Pre-filled issuance form from the link's query parameters."""
    form = parse_issue_url(str(request.url))
    return form.model_dump()


@router.post("/issue")
async def issue_submit(
    form: IssueFormState, service: ConsentWalletService = Depends(get_service)
) -> JSONResponse:
    try:
        result = await submit_issue_form(form, service.ledger)
    except IssuanceError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    return JSONResponse(content=result.model_dump(mode="json"))
