from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime

from apps.spare_parts.models import PartLifecycle

class SparePartBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Spare part name")
    description: Optional[str] = Field(None, description="Detailed description")
    part_number: str = Field(..., min_length=1, max_length=100, description="Manufacturer or internal part number")
    category_id: Optional[str] = Field(None, max_length=64, description="Category")
    supplier_id: Optional[str] = Field(None, max_length=64, description="Preferred supplier")
    cost_price: float = Field(..., ge=0, description="Unit cost price")
    selling_price: float = Field(..., ge=0, description="Unit selling price")
    mrp: Optional[float] = Field(None, ge=0, description="Maximum retail price")
    markup_percent: float = Field(0.0, ge=0)
    warranty_months: int = Field(0, ge=0, description="Warranty duration in months")

    @field_validator('part_number')
    @classmethod
    def part_number_uppercase(cls, v):
        return v.strip().upper()

class SparePartCreate(SparePartBase):
    pass

class SparePartUpdate(BaseModel):
    """Descriptive fields only; prices go through the pricing endpoint."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category_id: Optional[str] = Field(None, max_length=64)
    supplier_id: Optional[str] = Field(None, max_length=64)
    warranty_months: Optional[int] = Field(None, ge=0)

class SparePartPricingUpdate(BaseModel):
    cost_price: float = Field(..., ge=0)
    selling_price: float = Field(..., ge=0)
    mrp: Optional[float] = Field(None, ge=0)
    markup_percent: Optional[float] = Field(None, ge=0)
    reason: str = Field(..., min_length=1, description="Why the price changed")

class SparePartResponse(SparePartBase):
    id: int
    lifecycle: PartLifecycle
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class PriceHistoryResponse(BaseModel):
    id: int
    spare_part_id: int
    old_cost_price: float
    new_cost_price: float
    old_selling_price: float
    new_selling_price: float
    old_mrp: Optional[float]
    new_mrp: Optional[float]
    old_markup_percent: Optional[float]
    new_markup_percent: Optional[float]
    reason: str
    changed_by: str
    changed_at: datetime

    class Config:
        from_attributes = True

class SparePartListResponse(BaseModel):
    items: List[SparePartResponse]
    total: int
    page: int
    size: int
    total_pages: int
