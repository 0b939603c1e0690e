from fastapi import APIRouter, Depends, status, Query
from typing import List, Optional
from apps.spare_parts.schemas import (
    SparePartCreate,
    SparePartUpdate,
    SparePartPricingUpdate,
    SparePartResponse,
    SparePartListResponse,
    PriceHistoryResponse,
)
from apps.spare_parts.models import PartLifecycle
from apps.spare_parts.services import SparePartService, get_spare_part_service
from core.dependencies import get_current_actor
import math

router = APIRouter()

@router.post(
    "/",
    response_model=SparePartResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new spare part",
    description="Add a spare part to the catalog"
)
def create_spare_part(
    spare_part: SparePartCreate,
    service: SparePartService = Depends(get_spare_part_service),
):
    return service.create_spare_part(spare_part)

@router.get(
    "/",
    response_model=SparePartListResponse,
    summary="Get all spare parts",
    description="Retrieve spare parts with filtering and pagination"
)
def get_spare_parts(
    skip: int = Query(0, ge=0, description="Number of items to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Number of items to return"),
    search: Optional[str] = Query(None, description="Search in name, description, or part number"),
    category_id: Optional[str] = Query(None, description="Filter by category"),
    min_price: Optional[float] = Query(None, ge=0, description="Minimum selling price"),
    max_price: Optional[float] = Query(None, ge=0, description="Maximum selling price"),
    lifecycle: Optional[PartLifecycle] = Query(PartLifecycle.ACTIVE, description="Lifecycle state"),
    service: SparePartService = Depends(get_spare_part_service),
):
    spare_parts, total = service.get_spare_parts(
        skip=skip,
        limit=limit,
        search=search,
        category_id=category_id,
        min_price=min_price,
        max_price=max_price,
        lifecycle=lifecycle,
    )

    total_pages = math.ceil(total / limit) if limit > 0 else 1
    current_page = (skip // limit) + 1 if limit > 0 else 1

    return SparePartListResponse(
        items=spare_parts,
        total=total,
        page=current_page,
        size=limit,
        total_pages=total_pages
    )

@router.get(
    "/categories/all",
    response_model=List[str],
    summary="Get all categories",
    description="Get all unique spare part categories"
)
def get_categories(
    service: SparePartService = Depends(get_spare_part_service),
):
    return service.get_categories()

@router.get(
    "/{spare_part_id}",
    response_model=SparePartResponse,
    summary="Get spare part by ID",
)
def get_spare_part(
    spare_part_id: int,
    service: SparePartService = Depends(get_spare_part_service),
):
    return service.get_spare_part(spare_part_id)

@router.put(
    "/{spare_part_id}",
    response_model=SparePartResponse,
    summary="Update spare part",
    description="Update descriptive fields of a spare part"
)
def update_spare_part(
    spare_part_id: int,
    spare_part_update: SparePartUpdate,
    service: SparePartService = Depends(get_spare_part_service),
):
    return service.update_spare_part(spare_part_id, spare_part_update)

@router.patch(
    "/{spare_part_id}/pricing",
    response_model=SparePartResponse,
    summary="Change spare part prices",
    description="Update prices and record the change in the price history"
)
def update_pricing(
    spare_part_id: int,
    pricing: SparePartPricingUpdate,
    service: SparePartService = Depends(get_spare_part_service),
    actor: str = Depends(get_current_actor),
):
    return service.update_pricing(spare_part_id, pricing, actor)

@router.get(
    "/{spare_part_id}/price-history",
    response_model=List[PriceHistoryResponse],
    summary="Get price history",
)
def get_price_history(
    spare_part_id: int,
    service: SparePartService = Depends(get_spare_part_service),
):
    return service.get_price_history(spare_part_id)

@router.delete(
    "/{spare_part_id}",
    status_code=status.HTTP_200_OK,
    summary="Retire spare part",
    description="Discontinue a stocked spare part, or delete an unreferenced one"
)
def delete_spare_part(
    spare_part_id: int,
    service: SparePartService = Depends(get_spare_part_service),
):
    lifecycle = service.delete_spare_part(spare_part_id)
    return {"message": f"Spare part marked as {lifecycle.value.lower()}", "lifecycle": lifecycle}
