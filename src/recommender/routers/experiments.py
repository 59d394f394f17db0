"""Experiments router – A/B variant administration and results.

GET /experiments/results
    Outcome statistics for every active variant (or one, with ``variantId``).

POST /experiments/variants
    Create a new variant.

POST /experiments/variants/{variant_id}/deactivate
    Stop assigning users to a variant.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from ..models import VariantConfig, VariantResults
from ..security import verify_api_key

router = APIRouter(prefix="/experiments", tags=["experiments"], dependencies=[Depends(verify_api_key)])

logger = logging.getLogger(__name__)


class VariantResultsResponse(BaseModel):
    variants: list[VariantResults]


class VariantCreatedResponse(BaseModel):
    id: str


@router.get("/results", response_model=VariantResultsResponse)
async def results(
    request: Request,
    variant_id: Annotated[str | None, Query(alias="variantId")] = None,
) -> VariantResultsResponse:
    tracker = request.app.state.services.tracker
    variants = await tracker.get_results(variant_id)
    if variant_id is not None and not variants:
        raise HTTPException(status_code=404, detail=f"Unknown variant: {variant_id}")
    variants.sort(key=lambda v: v.performance_score, reverse=True)
    return VariantResultsResponse(variants=variants)


@router.post("/variants", response_model=VariantCreatedResponse, status_code=201)
async def create_variant(request: Request, payload: VariantConfig) -> VariantCreatedResponse:
    tracker = request.app.state.services.tracker
    variant_id = await tracker.create_variant(payload)
    return VariantCreatedResponse(id=variant_id)


@router.post("/variants/{variant_id}/deactivate", status_code=204)
async def deactivate_variant(request: Request, variant_id: str) -> None:
    tracker = request.app.state.services.tracker
    if not await tracker.deactivate_variant(variant_id):
        raise HTTPException(status_code=404, detail=f"Unknown variant: {variant_id}")
