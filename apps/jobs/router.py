from fastapi import APIRouter, Depends, status, Query
from typing import Optional
import math

from apps.jobs.schemas import JobCreate, JobResponse, JobStatusUpdate, JobListResponse
from apps.jobs.services import JobService, get_job_service
from apps.jobs.models import JobStatus
from core.database import with_transaction

router = APIRouter()

@router.post(
    "/",
    response_model=JobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a service job",
)
def create_job(
    job: JobCreate,
    service: JobService = Depends(get_job_service),
):
    return service.create_job(job)

@router.get(
    "/",
    response_model=JobListResponse,
    summary="List service jobs",
)
def get_jobs(
    skip: int = Query(0, ge=0, description="Number of items to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Number of items to return"),
    status_filter: Optional[JobStatus] = Query(None, alias="status", description="Filter by status"),
    store_id: Optional[str] = Query(None, description="Filter by store"),
    technician_id: Optional[str] = Query(None, description="Filter by technician"),
    service: JobService = Depends(get_job_service),
):
    jobs, total = service.get_jobs(
        skip=skip,
        limit=limit,
        status=status_filter,
        store_id=store_id,
        technician_id=technician_id,
    )

    total_pages = math.ceil(total / limit) if limit > 0 else 1
    current_page = (skip // limit) + 1 if limit > 0 else 1

    return JobListResponse(
        items=jobs,
        total=total,
        page=current_page,
        size=limit,
        total_pages=total_pages
    )

@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get service job by ID",
)
def get_job(
    job_id: int,
    service: JobService = Depends(get_job_service),
):
    return service.get_job(job_id)

@router.patch(
    "/{job_id}/status",
    response_model=JobResponse,
    summary="Update job status",
)
def update_job_status(
    job_id: int,
    status_update: JobStatusUpdate,
    service: JobService = Depends(get_job_service),
):
    job = with_transaction(service.db, service.set_job_status, job_id, status_update.status)
    service.db.refresh(job)
    return job
