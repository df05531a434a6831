from fastapi import APIRouter, HTTPException, Response

from app.dependencies import SessionStoreDep
from app.schemas.pricing import PriceEntry, PricingSnapshot, SelectionParams

router = APIRouter(prefix="/pricing")


@router.put("/sessions/{session_id}", response_model=PricingSnapshot)
async def select_context(
    session_id: str,
    params: SelectionParams,
    store: SessionStoreDep,
) -> PricingSnapshot:
    cache = store.select(session_id, params)
    return cache.snapshot()


@router.get("/sessions/{session_id}", response_model=PricingSnapshot)
async def get_snapshot(session_id: str, store: SessionStoreDep) -> PricingSnapshot:
    return store.get(session_id).snapshot()


@router.get("/sessions/{session_id}/prices/{days}", response_model=PriceEntry)
async def get_price(session_id: str, days: int, store: SessionStoreDep) -> PriceEntry:
    entry = store.get(session_id).get_price(days)
    if entry is None:
        raise HTTPException(status_code=404, detail="Price not yet available")
    return entry


@router.post("/sessions/{session_id}/retry", response_model=PricingSnapshot)
async def retry_stream(session_id: str, store: SessionStoreDep) -> PricingSnapshot:
    cache = store.get(session_id)
    cache.retry()
    return cache.snapshot()


@router.delete("/sessions/{session_id}", status_code=204)
async def close_session(session_id: str, store: SessionStoreDep) -> Response:
    store.close(session_id)
    return Response(status_code=204)
