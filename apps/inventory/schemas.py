from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime

from apps.inventory.models import MovementType, ReservationStatus

class InventoryInitialize(BaseModel):
    spare_part_id: int
    store_id: str = Field(..., min_length=1, max_length=64)
    store_name: Optional[str] = Field(None, max_length=255)
    initial_stock: int = Field(0, ge=0)
    minimum_stock: int = Field(10, ge=0)
    maximum_stock: int = Field(100, ge=0)
    reorder_level: int = Field(20, ge=0)
    unit_cost: Optional[float] = Field(None, ge=0, description="Defaults to the part cost price")
    batch_number: Optional[str] = Field(None, max_length=64)

    @model_validator(mode="after")
    def check_thresholds(self):
        if self.maximum_stock < self.minimum_stock:
            raise ValueError("maximum_stock must be greater than or equal to minimum_stock")
        return self

class StockMovementCreate(BaseModel):
    spare_part_id: int
    store_id: str = Field(..., min_length=1, max_length=64)
    movement_type: MovementType
    quantity: int = Field(..., ge=0, description="Units moved; for ADJUSTMENT the counted target")
    unit_cost: Optional[float] = Field(None, ge=0)
    reason: Optional[str] = None
    notes: Optional[str] = None
    reference_type: Optional[str] = Field(None, max_length=50)
    reference_id: Optional[str] = Field(None, max_length=64)
    batch_number: Optional[str] = Field(None, max_length=64)

class StockTransferCreate(BaseModel):
    spare_part_id: int
    from_store_id: str = Field(..., min_length=1, max_length=64)
    to_store_id: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(..., gt=0)
    reason: Optional[str] = None

    @model_validator(mode="after")
    def check_stores(self):
        if self.from_store_id == self.to_store_id:
            raise ValueError("Source and destination stores must differ")
        return self

class StockCountLine(BaseModel):
    spare_part_id: int
    physical_count: int = Field(..., ge=0)
    notes: Optional[str] = None

class StockCountCreate(BaseModel):
    store_id: str = Field(..., min_length=1, max_length=64)
    lines: List[StockCountLine] = Field(..., min_length=1)

class StockCountResult(BaseModel):
    adjustments: int
    total_variance: int

class InventoryLevelResponse(BaseModel):
    id: int
    spare_part_id: int
    store_id: str
    store_name: Optional[str]
    current_stock: int
    available_stock: int
    reserved_stock: int
    damaged_stock: int
    minimum_stock: int
    maximum_stock: int
    reorder_level: int
    reorder_quantity: int
    last_count_date: Optional[datetime]
    last_movement_date: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True

class InventoryLevelDetail(InventoryLevelResponse):
    stock_status: str
    urgency_level: str
    value_at_cost: float
    value_at_selling: float
    reorder_required: bool

class InventoryLevelListResponse(BaseModel):
    items: List[InventoryLevelDetail]
    total: int
    page: int
    size: int
    total_pages: int

class LowStockAlert(InventoryLevelDetail):
    shortfall_quantity: int
    suggested_order_quantity: int

class StockMovementResponse(BaseModel):
    id: int
    inventory_level_id: int
    spare_part_id: int
    store_id: str
    batch_id: Optional[int]
    movement_type: MovementType
    quantity: int
    previous_stock: int
    new_stock: int
    unit_cost: float
    total_value: float
    reference_type: Optional[str]
    reference_id: Optional[str]
    reason: Optional[str]
    notes: Optional[str]
    created_by: str
    movement_date: datetime

    class Config:
        from_attributes = True

class StockBatchResponse(BaseModel):
    id: int
    batch_number: str
    unit_cost: float
    received_quantity: int
    remaining_quantity: int
    source_type: MovementType
    received_at: datetime

    class Config:
        from_attributes = True

class StockReservationResponse(BaseModel):
    id: int
    request_id: int
    spare_part_id: int
    store_id: str
    reserved_quantity: int
    reserved_by: str
    reserved_for: Optional[str]
    reserved_at: datetime
    expires_at: datetime
    status: ReservationStatus
    resolved_at: Optional[datetime]

    class Config:
        from_attributes = True
