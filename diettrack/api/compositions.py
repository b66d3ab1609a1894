"""Composition lookup endpoint (debugging and client hints)."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from diettrack.api.deps import get_composition_chain
from diettrack.models import CompositionMatch
from diettrack.services.composition import CompositionLookupChain

router = APIRouter(prefix="/api/v1/compositions", tags=["compositions"])


@router.get("/resolve", response_model=Optional[CompositionMatch])
async def resolve_composition(
    q: str = Query(..., min_length=1, description="Food name"),
    user_id: Optional[str] = Query(None, description="User ID for personal aliases"),
    chain: CompositionLookupChain = Depends(get_composition_chain),
):
    """Resolve a food name to per-100g reference data, or null."""
    return await chain.resolve(q, user_id or None)
