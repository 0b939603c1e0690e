from fastapi import APIRouter, Depends, status, Query
from typing import List, Optional
import math

from apps.inventory.schemas import (
    InventoryInitialize,
    InventoryLevelResponse,
    InventoryLevelDetail,
    InventoryLevelListResponse,
    LowStockAlert,
    StockMovementCreate,
    StockMovementResponse,
    StockTransferCreate,
    StockCountCreate,
    StockCountResult,
    StockBatchResponse,
)
from apps.inventory.services import StockLedger, get_stock_ledger
from apps.inventory.reservations import ReservationManager
from core.dependencies import get_current_actor

router = APIRouter()

# ============ STATIC ROUTES FIRST ============

@router.get(
    "/alerts/low-stock",
    response_model=List[LowStockAlert],
    summary="Get low stock alerts",
    description="Stock levels at or below their reorder level"
)
def get_low_stock_alerts(
    store_id: Optional[str] = Query(None, description="Filter by store"),
    ledger: StockLedger = Depends(get_stock_ledger),
):
    return [ledger.low_stock_alert(level) for level in ledger.list_low_stock(store_id)]

@router.post(
    "/levels",
    response_model=InventoryLevelResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Initialize stock",
    description="Create the stock level for a spare part in a store"
)
def initialize_stock(
    payload: InventoryInitialize,
    ledger: StockLedger = Depends(get_stock_ledger),
    actor: str = Depends(get_current_actor),
):
    level = ledger.initialize_stock(
        payload.spare_part_id,
        payload.store_id,
        initial_stock=payload.initial_stock,
        minimum_stock=payload.minimum_stock,
        maximum_stock=payload.maximum_stock,
        reorder_level=payload.reorder_level,
        store_name=payload.store_name,
        unit_cost=payload.unit_cost,
        batch_number=payload.batch_number,
        actor=actor,
    )
    ledger.db.refresh(level)
    return level

@router.get(
    "/levels",
    response_model=InventoryLevelListResponse,
    summary="Get stock levels",
    description="Retrieve stock levels with filtering and pagination"
)
def get_stock_levels(
    skip: int = Query(0, ge=0, description="Number of items to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Number of items to return"),
    store_id: Optional[str] = Query(None, description="Filter by store"),
    spare_part_id: Optional[int] = Query(None, description="Filter by spare part"),
    low_stock: bool = Query(False, description="Only levels at or below reorder level"),
    out_of_stock: bool = Query(False, description="Only levels with no stock"),
    min_quantity: Optional[int] = Query(None, ge=0),
    max_quantity: Optional[int] = Query(None, ge=0),
    ledger: StockLedger = Depends(get_stock_ledger),
):
    levels, total = ledger.list_levels(
        skip=skip,
        limit=limit,
        store_id=store_id,
        spare_part_id=spare_part_id,
        low_stock=low_stock,
        out_of_stock=out_of_stock,
        min_quantity=min_quantity,
        max_quantity=max_quantity,
    )

    total_pages = math.ceil(total / limit) if limit > 0 else 1
    current_page = (skip // limit) + 1 if limit > 0 else 1

    return InventoryLevelListResponse(
        items=[ledger.describe_level(level) for level in levels],
        total=total,
        page=current_page,
        size=limit,
        total_pages=total_pages
    )

@router.post(
    "/movements",
    response_model=StockMovementResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record stock movement",
    description="Record a stock movement and update the stock level"
)
def record_movement(
    payload: StockMovementCreate,
    ledger: StockLedger = Depends(get_stock_ledger),
    actor: str = Depends(get_current_actor),
):
    movement = ledger.record_movement(
        payload.spare_part_id,
        payload.store_id,
        payload.movement_type,
        payload.quantity,
        unit_cost=payload.unit_cost,
        reference_type=payload.reference_type,
        reference_id=payload.reference_id,
        reason=payload.reason,
        notes=payload.notes,
        actor=actor,
        batch_number=payload.batch_number,
    )
    ledger.db.refresh(movement)
    return movement

@router.post(
    "/transfers",
    response_model=List[StockMovementResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Transfer stock between stores",
)
def transfer_stock(
    payload: StockTransferCreate,
    ledger: StockLedger = Depends(get_stock_ledger),
    actor: str = Depends(get_current_actor),
):
    outgoing, incoming = ledger.transfer_stock(
        payload.spare_part_id,
        payload.from_store_id,
        payload.to_store_id,
        payload.quantity,
        reason=payload.reason,
        actor=actor,
    )
    ledger.db.refresh(outgoing)
    ledger.db.refresh(incoming)
    return [outgoing, incoming]

@router.post(
    "/stock-counts",
    response_model=StockCountResult,
    summary="Perform stock count",
    description="Adjust system stock to physical counts"
)
def perform_stock_count(
    payload: StockCountCreate,
    ledger: StockLedger = Depends(get_stock_ledger),
    actor: str = Depends(get_current_actor),
):
    return ledger.perform_stock_count(
        payload.store_id,
        [line.model_dump() for line in payload.lines],
        actor=actor,
    )

@router.post(
    "/reservations/expire",
    summary="Expire stale reservations",
)
def expire_reservations(
    ledger: StockLedger = Depends(get_stock_ledger),
):
    expired = ReservationManager(ledger.db, ledger=ledger).expire_stale()
    return {"expired": expired}

# ============ DYNAMIC ROUTES ============

@router.get(
    "/levels/{spare_part_id}/{store_id}",
    response_model=InventoryLevelDetail,
    summary="Get stock level",
)
def get_stock_level(
    spare_part_id: int,
    store_id: str,
    ledger: StockLedger = Depends(get_stock_ledger),
):
    return ledger.describe_level(ledger.get_level(spare_part_id, store_id))

@router.get(
    "/levels/{spare_part_id}/{store_id}/movements",
    response_model=List[StockMovementResponse],
    summary="Get movement history",
)
def get_movements(
    spare_part_id: int,
    store_id: str,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    ledger: StockLedger = Depends(get_stock_ledger),
):
    movements, _ = ledger.list_movements(spare_part_id, store_id, skip=skip, limit=limit)
    return movements

@router.get(
    "/levels/{spare_part_id}/{store_id}/batches",
    response_model=List[StockBatchResponse],
    summary="Get stock batches",
)
def get_batches(
    spare_part_id: int,
    store_id: str,
    ledger: StockLedger = Depends(get_stock_ledger),
):
    return ledger.list_batches(spare_part_id, store_id)
