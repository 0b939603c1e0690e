from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from apps.jobs.models import JobStatus

class JobBase(BaseModel):
    store_id: str = Field(..., min_length=1, max_length=64)
    vehicle_number: Optional[str] = Field(None, max_length=50)
    technician_id: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = None
    labor_cost: Optional[float] = Field(None, ge=0, description="Leave empty to use the default labor cost")

class JobCreate(JobBase):
    pass

class JobResponse(JobBase):
    id: int
    job_number: str
    status: JobStatus
    parts_cost: float
    labor_total: float
    actual_cost: float
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True

class JobStatusUpdate(BaseModel):
    status: JobStatus

class JobListResponse(BaseModel):
    items: List[JobResponse]
    total: int
    page: int
    size: int
    total_pages: int
