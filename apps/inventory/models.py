from core.database import Base
from sqlalchemy import (
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
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

class MovementType(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"
    TRANSFER = "TRANSFER"
    ADJUSTMENT = "ADJUSTMENT"
    DAMAGED = "DAMAGED"
    RETURN = "RETURN"

class ReservationStatus(str, enum.Enum):
    ACTIVE = "Active"
    EXPIRED = "Expired"
    RELEASED = "Released"
    CONSUMED = "Consumed"

class InventoryLevel(Base):
    """Stock counters for one (spare part, store) pair.

    current_stock == available_stock + reserved_stock + damaged_stock, and the
    sum of remaining batch quantities equals available_stock + reserved_stock.
    """
    __tablename__ = "inventory_levels"
    __table_args__ = (
        UniqueConstraint("spare_part_id", "store_id", name="uq_inventory_level_part_store"),
        CheckConstraint("current_stock >= 0", name="ck_inventory_current_nonnegative"),
        CheckConstraint("available_stock >= 0", name="ck_inventory_available_nonnegative"),
        CheckConstraint("reserved_stock >= 0", name="ck_inventory_reserved_nonnegative"),
        CheckConstraint("damaged_stock >= 0", name="ck_inventory_damaged_nonnegative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    spare_part_id = Column(Integer, ForeignKey("spare_parts.id"), index=True, nullable=False)
    store_id = Column(String(64), index=True, nullable=False)
    store_name = Column(String(255), nullable=True)

    current_stock = Column(Integer, default=0, nullable=False)
    available_stock = Column(Integer, default=0, nullable=False)
    reserved_stock = Column(Integer, default=0, nullable=False)
    damaged_stock = Column(Integer, default=0, nullable=False)

    minimum_stock = Column(Integer, default=10, nullable=False)
    maximum_stock = Column(Integer, default=100, nullable=False)
    reorder_level = Column(Integer, default=20, nullable=False)
    reorder_quantity = Column(Integer, default=0, nullable=False)

    last_count_date = Column(DateTime, nullable=True)
    last_movement_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    spare_part = relationship("SparePart", lazy="joined")
    batches = relationship("StockBatch", back_populates="inventory_level", order_by="StockBatch.received_at")

class StockBatch(Base):
    """A received lot; FIFO issuance consumes the oldest remaining batch first."""
    __tablename__ = "stock_batches"
    __table_args__ = (
        CheckConstraint("remaining_quantity >= 0", name="ck_stock_batch_remaining_nonnegative"),
        Index("ix_stock_batches_level_received", "inventory_level_id", "received_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    inventory_level_id = Column(Integer, ForeignKey("inventory_levels.id"), index=True, nullable=False)
    batch_number = Column(String(64), index=True, nullable=False)
    unit_cost = Column(Float, nullable=False, default=0.0)
    received_quantity = Column(Integer, nullable=False)
    remaining_quantity = Column(Integer, nullable=False)
    source_type = Column(SQLEnum(MovementType, native_enum=False), nullable=False)
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    inventory_level = relationship("InventoryLevel", back_populates="batches")

class StockMovement(Base):
    """Append-only audit row; one per counter mutation."""
    __tablename__ = "stock_movements"
    __table_args__ = (
        Index("ix_stock_movements_level_date", "inventory_level_id", "movement_date"),
        Index("ix_stock_movements_reference", "reference_type", "reference_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    inventory_level_id = Column(Integer, ForeignKey("inventory_levels.id"), index=True, nullable=False)
    spare_part_id = Column(Integer, ForeignKey("spare_parts.id"), index=True, nullable=False)
    store_id = Column(String(64), index=True, nullable=False)
    batch_id = Column(Integer, ForeignKey("stock_batches.id"), nullable=True)

    movement_type = Column(SQLEnum(MovementType, native_enum=False), index=True, nullable=False)
    quantity = Column(Integer, nullable=False)  # Signed: negative leaves current stock
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)
    unit_cost = Column(Float, nullable=False, default=0.0)
    total_value = Column(Float, nullable=False, default=0.0)

    reference_type = Column(String(50), nullable=True)
    reference_id = Column(String(64), nullable=True)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=False)
    movement_date = Column(DateTime, default=datetime.utcnow, nullable=False)

    batch = relationship("StockBatch")

class StockReservation(Base):
    __tablename__ = "stock_reservations"
    __table_args__ = (
        CheckConstraint("reserved_quantity > 0", name="ck_stock_reservation_positive"),
        Index("ix_stock_reservations_status_expiry", "status", "expires_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("spare_part_requests.id"), index=True, nullable=False)
    inventory_level_id = Column(Integer, ForeignKey("inventory_levels.id"), index=True, nullable=False)
    spare_part_id = Column(Integer, ForeignKey("spare_parts.id"), nullable=False)
    store_id = Column(String(64), nullable=False)

    reserved_quantity = Column(Integer, nullable=False)
    reserved_by = Column(String(64), nullable=False)
    reserved_for = Column(String(64), nullable=True)
    reserved_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    status = Column(
        SQLEnum(ReservationStatus, native_enum=False),
        default=ReservationStatus.ACTIVE,
        index=True,
        nullable=False,
    )
    resolved_at = Column(DateTime, nullable=True)
