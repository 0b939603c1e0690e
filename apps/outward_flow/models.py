from core.database import Base
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

class RequestStatus(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    ISSUED = "Issued"
    INSTALLED = "Installed"
    RETURNED = "Returned"
    CANCELLED = "Cancelled"

class Urgency(str, enum.Enum):
    NORMAL = "Normal"
    URGENT = "Urgent"
    EMERGENCY = "Emergency"

class ApprovalDecision(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"

class ReturnCondition(str, enum.Enum):
    GOOD = "Good"
    DAMAGED = "Damaged"
    DEFECTIVE = "Defective"

class SparePartRequest(Base):
    __tablename__ = "spare_part_requests"
    __table_args__ = (
        CheckConstraint("requested_quantity > 0", name="ck_part_request_quantity_positive"),
        Index("ix_part_requests_job_part", "service_request_id", "spare_part_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    service_request_id = Column(Integer, ForeignKey("service_jobs.id"), index=True, nullable=False)
    spare_part_id = Column(Integer, ForeignKey("spare_parts.id"), index=True, nullable=False)
    store_id = Column(String(64), index=True, nullable=False)
    requested_by = Column(String(64), index=True, nullable=False)  # Technician
    requested_quantity = Column(Integer, nullable=False)
    urgency = Column(SQLEnum(Urgency, native_enum=False), default=Urgency.NORMAL, nullable=False)
    justification = Column(Text, nullable=True)
    estimated_cost = Column(Float, nullable=False, default=0.0)
    approval_level = Column(Integer, nullable=False, default=1)
    status = Column(SQLEnum(RequestStatus, native_enum=False), default=RequestStatus.PENDING, index=True, nullable=False)

    approved_by = Column(String(64), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    issued_quantity = Column(Integer, nullable=True)
    issued_at = Column(DateTime, nullable=True)
    issued_by = Column(String(64), nullable=True)
    issued_cost = Column(Float, nullable=True)

    installed_quantity = Column(Integer, nullable=False, default=0)

    returned_quantity = Column(Integer, nullable=False, default=0)
    returned_at = Column(DateTime, nullable=True)
    returned_by = Column(String(64), nullable=True)
    return_reason = Column(Text, nullable=True)
    return_condition = Column(SQLEnum(ReturnCondition, native_enum=False), nullable=True)

    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String(64), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    spare_part = relationship("SparePart", lazy="joined")
    approval_history = relationship(
        "ApprovalHistory",
        back_populates="request",
        order_by="ApprovalHistory.id",
    )
    issued_batches = relationship(
        "IssuedBatch",
        back_populates="request",
        order_by="IssuedBatch.sequence",
    )

    @property
    def batch_numbers(self):
        return [batch.batch_number for batch in self.issued_batches]

class ApprovalHistory(Base):
    """Immutable record of one approval decision."""
    __tablename__ = "approval_history"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("spare_part_requests.id"), index=True, nullable=False)
    level = Column(Integer, nullable=False)
    approver_id = Column(String(64), nullable=False)
    decision = Column(SQLEnum(ApprovalDecision, native_enum=False), nullable=False)
    comments = Column(Text, nullable=True)
    conditions = Column(Text, nullable=True)
    request_value = Column(Float, nullable=False)
    available_stock = Column(Integer, nullable=False)  # Snapshot at decision time
    processed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    request = relationship("SparePartRequest", back_populates="approval_history")

class IssuedBatch(Base):
    """One FIFO slice of an issuance, in consumption order."""
    __tablename__ = "issued_batches"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("spare_part_requests.id"), index=True, nullable=False)
    batch_id = Column(Integer, ForeignKey("stock_batches.id"), nullable=False)
    movement_id = Column(Integer, ForeignKey("stock_movements.id"), nullable=False)
    sequence = Column(Integer, nullable=False)
    batch_number = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_cost = Column(Float, nullable=False)

    request = relationship("SparePartRequest", back_populates="issued_batches")

class InstalledPart(Base):
    __tablename__ = "installed_parts"

    id = Column(Integer, primary_key=True, index=True)
    service_request_id = Column(Integer, ForeignKey("service_jobs.id"), index=True, nullable=False)
    spare_part_id = Column(Integer, ForeignKey("spare_parts.id"), index=True, nullable=False)
    request_id = Column(Integer, ForeignKey("spare_part_requests.id"), nullable=True)
    technician_id = Column(String(64), index=True, nullable=False)
    store_id = Column(String(64), nullable=False)
    batch_number = Column(String(64), nullable=True)
    serial_number = Column(String(100), nullable=True)

    quantity = Column(Integer, nullable=False)
    unit_cost = Column(Float, nullable=False)
    total_cost = Column(Float, nullable=False)
    selling_price = Column(Float, nullable=False)
    total_revenue = Column(Float, nullable=False)

    installed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    installation_notes = Column(Text, nullable=True)
    warranty_months = Column(Integer, nullable=False, default=0)
    warranty_expiry = Column(DateTime, nullable=True)

    replaced_part_id = Column(Integer, ForeignKey("installed_parts.id"), nullable=True)
    removal_date = Column(DateTime, nullable=True)
    removal_reason = Column(Text, nullable=True)
    removed_by = Column(String(64), nullable=True)

    spare_part = relationship("SparePart", lazy="joined")

class TechnicianLimit(Base):
    """Auto-approval authority of a technician for one part or one category."""
    __tablename__ = "technician_limits"
    __table_args__ = (
        CheckConstraint(
            "(spare_part_id IS NULL) <> (category_id IS NULL)",
            name="ck_technician_limit_scope",
        ),
        Index("ix_technician_limits_lookup", "technician_id", "spare_part_id", "category_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    technician_id = Column(String(64), nullable=False)
    spare_part_id = Column(Integer, ForeignKey("spare_parts.id"), nullable=True)
    category_id = Column(String(64), nullable=True)
    max_value_per_request = Column(Float, nullable=True)
    max_quantity_per_request = Column(Integer, nullable=True)
    requires_approval = Column(Boolean, nullable=False, default=True)
    auto_approve_below = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

class ServiceCostBreakdown(Base):
    """Latest cost roll-up of a service job; recomputed in full, never appended."""
    __tablename__ = "service_cost_breakdowns"

    id = Column(Integer, primary_key=True, index=True)
    service_request_id = Column(Integer, ForeignKey("service_jobs.id"), unique=True, nullable=False)

    parts_cost = Column(Float, nullable=False, default=0.0)
    parts_markup = Column(Float, nullable=False, default=0.0)
    parts_total = Column(Float, nullable=False, default=0.0)
    labor_cost = Column(Float, nullable=False, default=0.0)
    labor_markup = Column(Float, nullable=False, default=0.0)
    labor_total = Column(Float, nullable=False, default=0.0)
    overhead_cost = Column(Float, nullable=False, default=0.0)
    subtotal = Column(Float, nullable=False, default=0.0)
    tax_percent = Column(Float, nullable=False, default=0.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    discount_amount = Column(Float, nullable=False, default=0.0)
    total_cost = Column(Float, nullable=False, default=0.0)
    net_margin = Column(Float, nullable=False, default=0.0)
    margin_percent = Column(Float, nullable=False, default=0.0)

    calculated_by = Column(String(64), nullable=False, default="system")
    calculated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    lines = relationship(
        "ServiceCostLine",
        back_populates="breakdown",
        order_by="ServiceCostLine.installed_part_id",
        cascade="all, delete-orphan",
    )

class ServiceCostLine(Base):
    __tablename__ = "service_cost_lines"

    id = Column(Integer, primary_key=True, index=True)
    breakdown_id = Column(Integer, ForeignKey("service_cost_breakdowns.id"), index=True, nullable=False)
    installed_part_id = Column(Integer, ForeignKey("installed_parts.id"), nullable=False)
    spare_part_id = Column(Integer, ForeignKey("spare_parts.id"), nullable=False)
    part_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_cost = Column(Float, nullable=False)
    total_cost = Column(Float, nullable=False)
    selling_price = Column(Float, nullable=False)
    total_revenue = Column(Float, nullable=False)

    breakdown = relationship("ServiceCostBreakdown", back_populates="lines")
