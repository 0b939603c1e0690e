from core.database import Base
from sqlalchemy import Column, Integer, String, Float, DateTime, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

class PartLifecycle(str, enum.Enum):
    ACTIVE = "ACTIVE"
    DISCONTINUED = "DISCONTINUED"  # Still referenced by stock or history
    DELETED = "DELETED"

class SparePart(Base):
    __tablename__ = "spare_parts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), index=True, nullable=False)
    description = Column(Text, nullable=True)
    part_number = Column(String(100), unique=True, index=True, nullable=False)
    category_id = Column(String(64), index=True, nullable=True)
    supplier_id = Column(String(64), index=True, nullable=True)

    # Pricing, only changed through SparePartService.update_pricing
    cost_price = Column(Float, nullable=False)
    selling_price = Column(Float, nullable=False)
    mrp = Column(Float, nullable=True)
    markup_percent = Column(Float, default=0.0)

    warranty_months = Column(Integer, default=0)
    lifecycle = Column(SQLEnum(PartLifecycle, native_enum=False), default=PartLifecycle.ACTIVE, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    price_history = relationship(
        "PriceHistoryEntry",
        back_populates="spare_part",
        order_by="PriceHistoryEntry.changed_at",
    )

    @property
    def is_active(self) -> bool:
        return self.lifecycle == PartLifecycle.ACTIVE

class PriceHistoryEntry(Base):
    __tablename__ = "spare_part_price_history"

    id = Column(Integer, primary_key=True, index=True)
    spare_part_id = Column(Integer, ForeignKey("spare_parts.id"), index=True, nullable=False)
    old_cost_price = Column(Float, nullable=False)
    new_cost_price = Column(Float, nullable=False)
    old_selling_price = Column(Float, nullable=False)
    new_selling_price = Column(Float, nullable=False)
    old_mrp = Column(Float, nullable=True)
    new_mrp = Column(Float, nullable=True)
    old_markup_percent = Column(Float, nullable=True)
    new_markup_percent = Column(Float, nullable=True)
    reason = Column(Text, nullable=False)
    changed_by = Column(String(64), nullable=False)
    changed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    spare_part = relationship("SparePart", back_populates="price_history")
