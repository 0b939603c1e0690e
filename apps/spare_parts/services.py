from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import List, Optional, Tuple
from fastapi import Depends
from apps.spare_parts.models import SparePart, PriceHistoryEntry, PartLifecycle
from apps.spare_parts.schemas import (
    SparePartCreate,
    SparePartUpdate,
    SparePartPricingUpdate,
)
from core.database import get_db, transaction
from core.exceptions import NotFoundError, ValidationError
import logging

logger = logging.getLogger(__name__)

class SparePartService:
    def __init__(self, db: Session):
        self.db = db

    def get_spare_part(self, spare_part_id: int) -> SparePart:
        """Get spare part by ID"""
        spare_part = self.db.query(SparePart).filter(SparePart.id == spare_part_id).first()
        if not spare_part:
            raise NotFoundError(f"Spare part {spare_part_id} not found")
        return spare_part

    def get_active_spare_part(self, spare_part_id: int) -> SparePart:
        """Get a spare part that may still be requested and stocked"""
        spare_part = self.get_spare_part(spare_part_id)
        if not spare_part.is_active:
            raise ValidationError(
                f"Spare part {spare_part.part_number} is {spare_part.lifecycle.value.lower()}"
            )
        return spare_part

    def get_spare_part_by_number(self, part_number: str) -> Optional[SparePart]:
        """Get spare part by part number"""
        return self.db.query(SparePart).filter(
            SparePart.part_number == part_number.strip().upper()
        ).first()

    def get_spare_parts(
        self,
        skip: int = 0,
        limit: int = 100,
        search: Optional[str] = None,
        category_id: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        lifecycle: Optional[PartLifecycle] = PartLifecycle.ACTIVE,
    ) -> Tuple[List[SparePart], int]:
        """Get spare parts with filtering and pagination"""
        query = self.db.query(SparePart)

        if lifecycle:
            query = query.filter(SparePart.lifecycle == lifecycle)
        else:
            query = query.filter(SparePart.lifecycle != PartLifecycle.DELETED)

        if search:
            search_filter = or_(
                SparePart.name.ilike(f"%{search}%"),
                SparePart.description.ilike(f"%{search}%"),
                SparePart.part_number.ilike(f"%{search}%")
            )
            query = query.filter(search_filter)

        if category_id:
            query = query.filter(SparePart.category_id == category_id)

        if min_price is not None:
            query = query.filter(SparePart.selling_price >= min_price)

        if max_price is not None:
            query = query.filter(SparePart.selling_price <= max_price)

        total = query.count()
        spare_parts = query.order_by(SparePart.name).offset(skip).limit(limit).all()

        return spare_parts, total

    def create_spare_part(self, spare_part: SparePartCreate) -> SparePart:
        """Create a new spare part"""
        if self.get_spare_part_by_number(spare_part.part_number):
            raise ValidationError(
                f"Spare part with part number '{spare_part.part_number}' already exists"
            )

        db_spare_part = SparePart(**spare_part.model_dump())
        self.db.add(db_spare_part)
        self.db.commit()
        self.db.refresh(db_spare_part)

        logger.info(f"Created spare part: {db_spare_part.name} (ID: {db_spare_part.id})")
        return db_spare_part

    def update_spare_part(
        self,
        spare_part_id: int,
        spare_part_update: SparePartUpdate
    ) -> SparePart:
        """Update descriptive fields of a spare part"""
        db_spare_part = self.get_spare_part(spare_part_id)

        for field, value in spare_part_update.model_dump(exclude_unset=True).items():
            setattr(db_spare_part, field, value)

        self.db.commit()
        self.db.refresh(db_spare_part)

        logger.info(f"Updated spare part: {db_spare_part.name} (ID: {db_spare_part.id})")
        return db_spare_part

    def update_pricing(
        self,
        spare_part_id: int,
        pricing: SparePartPricingUpdate,
        changed_by: str,
    ) -> SparePart:
        """Change prices and append the previous values to the price history"""
        with transaction(self.db):
            db_spare_part = self.get_spare_part(spare_part_id)

            entry = PriceHistoryEntry(
                spare_part_id=db_spare_part.id,
                old_cost_price=db_spare_part.cost_price,
                new_cost_price=pricing.cost_price,
                old_selling_price=db_spare_part.selling_price,
                new_selling_price=pricing.selling_price,
                old_mrp=db_spare_part.mrp,
                new_mrp=pricing.mrp if pricing.mrp is not None else db_spare_part.mrp,
                old_markup_percent=db_spare_part.markup_percent,
                new_markup_percent=(
                    pricing.markup_percent
                    if pricing.markup_percent is not None
                    else db_spare_part.markup_percent
                ),
                reason=pricing.reason,
                changed_by=changed_by,
            )
            self.db.add(entry)

            db_spare_part.cost_price = entry.new_cost_price
            db_spare_part.selling_price = entry.new_selling_price
            db_spare_part.mrp = entry.new_mrp
            db_spare_part.markup_percent = entry.new_markup_percent

        self.db.refresh(db_spare_part)
        logger.info(
            f"Repriced {db_spare_part.part_number}: selling "
            f"{entry.old_selling_price} -> {entry.new_selling_price} ({pricing.reason})"
        )
        return db_spare_part

    def get_price_history(self, spare_part_id: int) -> List[PriceHistoryEntry]:
        self.get_spare_part(spare_part_id)
        return self.db.query(PriceHistoryEntry).filter(
            PriceHistoryEntry.spare_part_id == spare_part_id
        ).order_by(PriceHistoryEntry.changed_at, PriceHistoryEntry.id).all()

    def delete_spare_part(self, spare_part_id: int) -> PartLifecycle:
        """Retire a spare part.

        Parts referenced by stock levels, part requests, installations or
        price history become DISCONTINUED so that history stays resolvable;
        unreferenced parts become DELETED.
        """
        from apps.inventory.models import InventoryLevel
        from apps.outward_flow.models import InstalledPart, SparePartRequest

        db_spare_part = self.get_spare_part(spare_part_id)
        in_use = any(
            self.db.query(model.id).filter(model.spare_part_id == spare_part_id).first() is not None
            for model in (InventoryLevel, SparePartRequest, InstalledPart, PriceHistoryEntry)
        )

        db_spare_part.lifecycle = PartLifecycle.DISCONTINUED if in_use else PartLifecycle.DELETED
        self.db.commit()

        logger.info(
            f"Retired spare part: {db_spare_part.name} (ID: {db_spare_part.id}) "
            f"as {db_spare_part.lifecycle.value}"
        )
        return db_spare_part.lifecycle

    def get_categories(self) -> List[str]:
        """Get all unique categories"""
        categories = self.db.query(SparePart.category_id).filter(
            SparePart.category_id.isnot(None),
            SparePart.lifecycle == PartLifecycle.ACTIVE
        ).distinct().all()

        return [cat[0] for cat in categories if cat[0]]

# Dependency injection
def get_spare_part_service(db: Session = Depends(get_db)) -> SparePartService:
    return SparePartService(db)
