from core.database import Base
from sqlalchemy import Column, Integer, String, Float, DateTime, Text, Enum as SQLEnum
from datetime import datetime
import enum

class JobStatus(str, enum.Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_FOR_PARTS = "WAITING_FOR_PARTS"
    COMPLETED = "COMPLETED"
    CLOSED = "CLOSED"

class ServiceJob(Base):
    __tablename__ = "service_jobs"

    id = Column(Integer, primary_key=True, index=True)
    job_number = Column(String(50), unique=True, index=True, nullable=False)

    # Where the work happens and who does it
    store_id = Column(String(64), index=True, nullable=False)
    vehicle_number = Column(String(50), nullable=True)
    technician_id = Column(String(64), index=True, nullable=True)
    description = Column(Text, nullable=True)

    # Financial information, written back by the cost engine
    labor_cost = Column(Float, nullable=True)  # NULL means "use the configured default"
    parts_cost = Column(Float, default=0.0)
    labor_total = Column(Float, default=0.0)
    actual_cost = Column(Float, default=0.0)

    status = Column(SQLEnum(JobStatus, native_enum=False), default=JobStatus.OPEN, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
