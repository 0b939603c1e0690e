from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime

from apps.outward_flow.models import (
    ApprovalDecision,
    RequestStatus,
    ReturnCondition,
    Urgency,
)

# ============ PART REQUESTS ============

class PartRequestCreate(BaseModel):
    service_request_id: int
    spare_part_id: int
    technician_id: Optional[str] = Field(None, max_length=64, description="Defaults to the acting user")
    requested_quantity: int = Field(..., gt=0)
    urgency: Urgency = Urgency.NORMAL
    justification: Optional[str] = None

class PartRequestResponse(BaseModel):
    id: int
    service_request_id: int
    spare_part_id: int
    store_id: str
    requested_by: str
    requested_quantity: int
    urgency: Urgency
    justification: Optional[str] = None
    estimated_cost: float
    approval_level: int
    status: RequestStatus
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    issued_quantity: Optional[int] = None
    issued_at: Optional[datetime] = None
    issued_by: Optional[str] = None
    issued_cost: Optional[float] = None
    batch_numbers: List[str] = []
    installed_quantity: int
    returned_quantity: int
    returned_at: Optional[datetime] = None
    return_condition: Optional[ReturnCondition] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class PartRequestListResponse(BaseModel):
    items: List[PartRequestResponse]
    total: int
    page: int
    size: int
    total_pages: int

class ApprovalDecisionCreate(BaseModel):
    comments: Optional[str] = None
    conditions: Optional[str] = None

class RejectionCreate(BaseModel):
    reason: str = Field(..., min_length=1)

class CancellationCreate(BaseModel):
    reason: Optional[str] = None

class ApprovalHistoryResponse(BaseModel):
    id: int
    request_id: int
    level: int
    approver_id: str
    decision: ApprovalDecision
    comments: Optional[str] = None
    conditions: Optional[str] = None
    request_value: float
    available_stock: int
    processed_at: datetime

    class Config:
        from_attributes = True

# ============ ISSUANCE ============

class IssuedBatchResponse(BaseModel):
    batch_id: int
    batch_number: str
    quantity: int
    unit_cost: float

    class Config:
        from_attributes = True

class IssueResult(BaseModel):
    request_id: int
    issued_quantity: int
    total_cost: float
    batches: List[IssuedBatchResponse]

# ============ INSTALLATION & RETURNS ============

class PartInstallCreate(BaseModel):
    service_request_id: int
    spare_part_id: int
    technician_id: Optional[str] = Field(None, max_length=64, description="Defaults to the acting user")
    quantity: int = Field(..., gt=0)
    unit_cost: Optional[float] = Field(None, ge=0, description="Defaults to the average issued cost")
    batch_number: Optional[str] = Field(None, max_length=64)
    serial_number: Optional[str] = Field(None, max_length=100)
    installation_notes: Optional[str] = None
    replaced_part_id: Optional[int] = None

class InstalledPartResponse(BaseModel):
    id: int
    service_request_id: int
    spare_part_id: int
    request_id: Optional[int] = None
    technician_id: str
    store_id: str
    batch_number: Optional[str] = None
    serial_number: Optional[str] = None
    quantity: int
    unit_cost: float
    total_cost: float
    selling_price: float
    total_revenue: float
    installed_at: datetime
    installation_notes: Optional[str] = None
    warranty_months: int
    warranty_expiry: Optional[datetime] = None
    replaced_part_id: Optional[int] = None
    removal_date: Optional[datetime] = None
    removal_reason: Optional[str] = None
    removed_by: Optional[str] = None

    class Config:
        from_attributes = True

class PartReturnItem(BaseModel):
    spare_part_id: int
    quantity: int = Field(..., gt=0)
    condition: ReturnCondition
    reason: Optional[str] = None
    unit_cost: Optional[float] = Field(None, ge=0)

class PartReturnCreate(BaseModel):
    technician_id: Optional[str] = Field(None, max_length=64)
    returns: List[PartReturnItem] = Field(..., min_length=1)

class PartReturnResult(BaseModel):
    spare_part_id: int
    quantity: int
    condition: ReturnCondition
    status: str
    request_id: Optional[int] = None
    request_status: Optional[RequestStatus] = None
    error: Optional[str] = None
    detail: Optional[str] = None

# ============ TECHNICIAN LIMITS ============

class TechnicianLimitCreate(BaseModel):
    technician_id: str = Field(..., min_length=1, max_length=64)
    spare_part_id: Optional[int] = None
    category_id: Optional[str] = Field(None, max_length=64)
    max_value_per_request: Optional[float] = Field(None, gt=0)
    max_quantity_per_request: Optional[int] = Field(None, gt=0)
    requires_approval: bool = True
    auto_approve_below: Optional[float] = Field(None, ge=0)

    @model_validator(mode="after")
    def check_scope(self):
        if (self.spare_part_id is None) == (self.category_id is None):
            raise ValueError("Provide exactly one of spare_part_id or category_id")
        return self

class TechnicianLimitResponse(TechnicianLimitCreate):
    id: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True

# ============ COST BREAKDOWN ============

class ServiceCostLineResponse(BaseModel):
    installed_part_id: int
    spare_part_id: int
    part_name: str
    quantity: int
    unit_cost: float
    total_cost: float
    selling_price: float
    total_revenue: float

    class Config:
        from_attributes = True

class ServiceCostBreakdownResponse(BaseModel):
    service_request_id: int
    parts_cost: float
    parts_markup: float
    parts_total: float
    labor_cost: float
    labor_markup: float
    labor_total: float
    overhead_cost: float
    subtotal: float
    tax_percent: float
    tax_amount: float
    discount_amount: float
    total_cost: float
    net_margin: float
    margin_percent: float
    calculated_by: str
    calculated_at: datetime
    lines: List[ServiceCostLineResponse] = []

    class Config:
        from_attributes = True
