from sqlalchemy.orm import Session
from typing import List, Optional, Tuple
from fastapi import Depends
from datetime import datetime
import secrets
import string
import logging

from apps.jobs.models import ServiceJob, JobStatus
from apps.jobs.schemas import JobCreate
from core.config import Settings, settings as default_settings
from core.database import get_db
from core.exceptions import NotFoundError

logger = logging.getLogger(__name__)

class JobService:
    """Service-job provider consumed by the outward flow.

    Besides CRUD it answers the two collaborator questions the parts engine
    asks: where a job lives and what its labor costs.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings

    def generate_job_number(self) -> str:
        """Generate unique job number"""
        prefix = "SRV"
        while True:
            random_suffix = ''.join(secrets.choice(string.digits) for _ in range(6))
            job_number = f"{prefix}-{random_suffix}"
            existing = self.db.query(ServiceJob).filter(ServiceJob.job_number == job_number).first()
            if not existing:
                return job_number

    def get_job(self, job_id: int) -> ServiceJob:
        job = self.db.query(ServiceJob).filter(ServiceJob.id == job_id).first()
        if not job:
            raise NotFoundError(f"Service job {job_id} not found")
        return job

    def get_jobs(
        self,
        skip: int = 0,
        limit: int = 100,
        status: Optional[JobStatus] = None,
        store_id: Optional[str] = None,
        technician_id: Optional[str] = None,
    ) -> Tuple[List[ServiceJob], int]:
        query = self.db.query(ServiceJob)
        if status:
            query = query.filter(ServiceJob.status == status)
        if store_id:
            query = query.filter(ServiceJob.store_id == store_id)
        if technician_id:
            query = query.filter(ServiceJob.technician_id == technician_id)

        query = query.order_by(ServiceJob.created_at.desc())
        total = query.count()
        return query.offset(skip).limit(limit).all(), total

    def create_job(self, job_data: JobCreate) -> ServiceJob:
        db_job = ServiceJob(**job_data.model_dump(), job_number=self.generate_job_number())
        self.db.add(db_job)
        self.db.commit()
        self.db.refresh(db_job)

        logger.info(f"Created service job: {db_job.job_number} at store {db_job.store_id}")
        return db_job

    def set_job_status(self, job_id: int, status: JobStatus) -> ServiceJob:
        """Change the job status. Flushes only; the caller owns the commit."""
        db_job = self.get_job(job_id)
        if db_job.status != status:
            logger.info(f"Job {db_job.job_number} status {db_job.status.value} -> {status.value}")
        db_job.status = status
        if status == JobStatus.COMPLETED:
            db_job.completed_at = datetime.utcnow()
        self.db.flush()
        return db_job

    def estimate_labor(self, job_id: int) -> float:
        db_job = self.get_job(job_id)
        if db_job.labor_cost is None:
            return self.settings.DEFAULT_LABOR_COST
        return db_job.labor_cost

    def update_costs(self, job_id: int, parts_cost: float, labor_total: float, actual_cost: float) -> ServiceJob:
        db_job = self.get_job(job_id)
        db_job.parts_cost = parts_cost
        db_job.labor_total = labor_total
        db_job.actual_cost = actual_cost
        self.db.flush()
        return db_job

# Dependency injection
def get_job_service(db: Session = Depends(get_db)) -> JobService:
    return JobService(db)
