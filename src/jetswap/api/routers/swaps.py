"""Swap endpoints: quotes, submission, status, cancellation and history."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from jetswap.advice import ChatMessage
from jetswap.api.deps import get_services
from jetswap.errors import SwapNotFound
from jetswap.models import SwapIntent, SwapRecord, SwapStatus
from jetswap.swap.factory import SwapServices

router = APIRouter()


class QuoteRequest(BaseModel):
    """Quote request. Amounts are decimal strings."""

    source_token: str
    dest_token: str
    amount: str


class SwapRequest(BaseModel):
    """Swap submission."""

    user_id: str = Field(min_length=1)
    source_chain: str
    source_token: str
    dest_chain: str
    dest_token: str
    amount: str


class CancelRequest(BaseModel):
    actor_id: str


class StatusChangeOut(BaseModel):
    previous: str
    current: str
    at: str
    reason: str = ""


class SwapStatusOut(BaseModel):
    """Swap status as seen by the orchestrator."""

    swap_id: str
    status: str
    failure_reason: Optional[str] = None
    history: list[StatusChangeOut] = []


class SwapRecordOut(BaseModel):
    """Stored swap record (payload stays encrypted)."""

    id: str
    path: str
    route: str
    source_token: str
    dest_token: str
    amount: str
    expected_output: str
    status: str
    created_at: str
    updated_at: str
    is_local: bool = False

    @classmethod
    def from_record(cls, record: SwapRecord) -> "SwapRecordOut":
        return cls(
            id=record.id,
            path=record.path,
            route=record.route,
            source_token=record.source_token,
            dest_token=record.dest_token,
            amount=record.amount,
            expected_output=record.expected_output,
            status=record.status.value,
            created_at=record.created_at.isoformat(),
            updated_at=record.updated_at.isoformat(),
            is_local=record.is_local,
        )


class ChatRequest(BaseModel):
    message: str
    history: list[dict] = []


@router.post("/quotes")
async def create_quote(body: QuoteRequest, services: SwapServices = Depends(get_services)):
    """Price a token pair."""
    quote = services.orchestrator.quote_engine.quote(body.source_token, body.dest_token, body.amount)
    return quote.to_dict()


@router.post("/swaps", response_model=SwapStatusOut, status_code=202)
async def submit_swap(body: SwapRequest, services: SwapServices = Depends(get_services)):
    """Submit a swap. Returns once the swap is CONFIRMING."""
    intent = SwapIntent.create(
        user_id=body.user_id,
        source_chain=body.source_chain,
        source_token=body.source_token,
        dest_chain=body.dest_chain,
        dest_token=body.dest_token,
        amount=body.amount,
    )
    orchestrator = services.orchestrator
    swap_id = await orchestrator.submit(intent)
    return _status_out(services, swap_id, await orchestrator.get_status(swap_id))


@router.get("/swaps/{swap_id}", response_model=SwapStatusOut)
async def get_swap(swap_id: str, services: SwapServices = Depends(get_services)):
    status = await services.orchestrator.get_status(swap_id)
    return _status_out(services, swap_id, status)


@router.post("/swaps/{swap_id}/cancel", response_model=SwapStatusOut)
async def cancel_swap(
    swap_id: str, body: CancelRequest, services: SwapServices = Depends(get_services)
):
    """Cancel a swap that has not reached the custody lock."""
    await services.orchestrator.cancel(swap_id, body.actor_id)
    return _status_out(services, swap_id, await services.orchestrator.get_status(swap_id))


@router.get("/users/{user_id}/swaps", response_model=list[SwapRecordOut])
async def list_user_swaps(
    user_id: str,
    limit: int = Query(10, ge=1, le=100),
    services: SwapServices = Depends(get_services),
):
    """A user's swap history, newest first."""
    records = await services.ledger.list(user_id, limit)
    return [SwapRecordOut.from_record(record) for record in records]


@router.get("/advice")
async def get_advice(
    source: str,
    dest: str,
    token: str,
    services: SwapServices = Depends(get_services),
):
    return {"advice": await services.advice.get_advice(source, dest, token)}


@router.post("/chat")
async def chat(body: ChatRequest, services: SwapServices = Depends(get_services)):
    """Stream a support chat reply as plain text."""
    history = [
        ChatMessage(
            role=turn.get("role", "user"),
            text="".join(part.get("text", "") for part in turn.get("parts", [])),
        )
        for turn in body.history
    ]
    return StreamingResponse(
        services.advice.get_chat_stream(body.message, history), media_type="text/plain"
    )


def _status_out(services: SwapServices, swap_id: str, status: SwapStatus) -> SwapStatusOut:
    orchestrator = services.orchestrator
    try:
        history = orchestrator.get_history(swap_id)
        failure_reason = orchestrator.get_failure_reason(swap_id)
    except SwapNotFound:
        # Stored but not tracked by this process
        history, failure_reason = [], None
    return SwapStatusOut(
        swap_id=swap_id,
        status=status.value,
        failure_reason=failure_reason,
        history=[
            StatusChangeOut(
                previous=change.previous.value,
                current=change.current.value,
                at=change.at.isoformat(),
                reason=change.reason,
            )
            for change in history
        ],
    )
