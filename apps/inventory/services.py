from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Dict, List, Optional, Sequence, Tuple
from fastapi import Depends
from datetime import datetime
import logging

from apps.inventory.models import InventoryLevel, StockBatch, StockMovement, MovementType
from apps.spare_parts.models import SparePart, PartLifecycle
from apps.spare_parts.services import SparePartService
from core.database import get_db, transaction
from core.dependencies import SYSTEM_ACTOR
from core.exceptions import (
    DuplicateInventoryError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

INBOUND_TYPES = {MovementType.IN, MovementType.RETURN}
OUTBOUND_TYPES = {MovementType.OUT, MovementType.TRANSFER, MovementType.DAMAGED}


def get_stock_status(current_stock: int, minimum_stock: int, maximum_stock: int) -> str:
    if current_stock == 0:
        return "OUT_OF_STOCK"
    if current_stock <= minimum_stock * 0.5:
        return "CRITICAL_STOCK"
    if current_stock <= minimum_stock:
        return "LOW_STOCK"
    if current_stock >= maximum_stock:
        return "EXCESS_STOCK"
    return "NORMAL_STOCK"


def get_urgency_level(stock_status: str) -> str:
    return {
        "OUT_OF_STOCK": "CRITICAL",
        "CRITICAL_STOCK": "HIGH",
        "LOW_STOCK": "MEDIUM",
    }.get(stock_status, "LOW")


def _weighted_cost(taken: Sequence[Tuple[StockBatch, int]]) -> float:
    quantity = sum(qty for _, qty in taken)
    if not quantity:
        return 0.0
    return round(sum(batch.unit_cost * qty for batch, qty in taken) / quantity, 2)


class StockLedger:
    """Owns the per-(part, store) counters, FIFO batches and movement log.

    ``record_movement`` is the only way stock changes. Decrements are
    conditional UPDATEs guarded on the live row, so two writers racing for
    the same units cannot both succeed.
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------ reads

    def find_level(self, spare_part_id: int, store_id: str) -> Optional[InventoryLevel]:
        # populate_existing would discard unflushed edits on the row
        self.db.flush()
        return (
            self.db.query(InventoryLevel)
            .filter(
                InventoryLevel.spare_part_id == spare_part_id,
                InventoryLevel.store_id == store_id,
            )
            .populate_existing()
            .first()
        )

    def get_level(self, spare_part_id: int, store_id: str) -> InventoryLevel:
        level = self.find_level(spare_part_id, store_id)
        if not level:
            raise NotFoundError(
                f"Stock level not found for spare part {spare_part_id} in store {store_id}. "
                "Please initialize stock first."
            )
        return level

    def fifo_batches(self, level: InventoryLevel) -> List[StockBatch]:
        """Batches with stock left, oldest first."""
        return (
            self.db.query(StockBatch)
            .filter(
                StockBatch.inventory_level_id == level.id,
                StockBatch.remaining_quantity > 0,
            )
            .order_by(StockBatch.received_at.asc(), StockBatch.id.asc())
            .populate_existing()
            .all()
        )

    def list_batches(self, spare_part_id: int, store_id: str) -> List[StockBatch]:
        level = self.get_level(spare_part_id, store_id)
        return (
            self.db.query(StockBatch)
            .filter(StockBatch.inventory_level_id == level.id)
            .order_by(StockBatch.received_at.asc(), StockBatch.id.asc())
            .all()
        )

    def list_levels(
        self,
        skip: int = 0,
        limit: int = 100,
        store_id: Optional[str] = None,
        spare_part_id: Optional[int] = None,
        low_stock: bool = False,
        out_of_stock: bool = False,
        min_quantity: Optional[int] = None,
        max_quantity: Optional[int] = None,
    ) -> Tuple[List[InventoryLevel], int]:
        query = self.db.query(InventoryLevel).join(SparePart).filter(
            SparePart.lifecycle != PartLifecycle.DELETED
        )

        if store_id:
            query = query.filter(InventoryLevel.store_id == store_id)
        if spare_part_id:
            query = query.filter(InventoryLevel.spare_part_id == spare_part_id)
        if low_stock:
            query = query.filter(InventoryLevel.current_stock <= InventoryLevel.reorder_level)
        if out_of_stock:
            query = query.filter(InventoryLevel.current_stock <= 0)
        if min_quantity is not None:
            query = query.filter(InventoryLevel.current_stock >= min_quantity)
        if max_quantity is not None:
            query = query.filter(InventoryLevel.current_stock <= max_quantity)

        total = query.count()
        levels = query.order_by(InventoryLevel.created_at.desc(), InventoryLevel.id.desc()) \
            .offset(skip).limit(limit).all()
        return levels, total

    def list_low_stock(self, store_id: Optional[str] = None) -> List[InventoryLevel]:
        """Levels at or below their reorder level (column-to-column comparison)."""
        query = self.db.query(InventoryLevel).join(SparePart).filter(
            SparePart.lifecycle != PartLifecycle.DELETED,
            InventoryLevel.current_stock <= InventoryLevel.reorder_level,
        )
        if store_id:
            query = query.filter(InventoryLevel.store_id == store_id)
        return query.order_by(InventoryLevel.current_stock.asc(), InventoryLevel.id.asc()).all()

    def list_movements(
        self,
        spare_part_id: int,
        store_id: str,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[StockMovement], int]:
        level = self.get_level(spare_part_id, store_id)
        query = self.db.query(StockMovement).filter(StockMovement.inventory_level_id == level.id)
        total = query.count()
        movements = query.order_by(StockMovement.movement_date.desc(), StockMovement.id.desc()) \
            .offset(skip).limit(limit).all()
        return movements, total

    def describe_level(self, level: InventoryLevel) -> Dict:
        status = get_stock_status(level.current_stock, level.minimum_stock, level.maximum_stock)
        return {
            **{column.name: getattr(level, column.name) for column in InventoryLevel.__table__.columns},
            "stock_status": status,
            "urgency_level": get_urgency_level(status),
            "value_at_cost": round(level.current_stock * level.spare_part.cost_price, 2),
            "value_at_selling": round(level.current_stock * level.spare_part.selling_price, 2),
            "reorder_required": level.current_stock <= level.reorder_level,
        }

    def low_stock_alert(self, level: InventoryLevel) -> Dict:
        return {
            **self.describe_level(level),
            "shortfall_quantity": max(0, level.reorder_level - level.current_stock),
            "suggested_order_quantity": level.reorder_quantity,
        }

    # -------------------------------------------------------------- mutations

    def initialize_stock(
        self,
        spare_part_id: int,
        store_id: str,
        initial_stock: int = 0,
        minimum_stock: int = 10,
        maximum_stock: int = 100,
        reorder_level: int = 20,
        store_name: Optional[str] = None,
        unit_cost: Optional[float] = None,
        batch_number: Optional[str] = None,
        actor: str = SYSTEM_ACTOR,
    ) -> InventoryLevel:
        """Create the level for a (part, store) pair, optionally with opening stock."""
        if initial_stock < 0 or minimum_stock < 0 or reorder_level < 0:
            raise ValidationError("Stock quantities cannot be negative")
        if maximum_stock < minimum_stock:
            raise ValidationError("maximum_stock must be greater than or equal to minimum_stock")

        with transaction(self.db):
            part = SparePartService(self.db).get_active_spare_part(spare_part_id)
            if self.find_level(spare_part_id, store_id):
                raise DuplicateInventoryError(
                    "Stock level already exists for this spare part in this store"
                )

            level = InventoryLevel(
                spare_part_id=part.id,
                store_id=store_id,
                store_name=store_name,
                current_stock=0,
                available_stock=0,
                reserved_stock=0,
                damaged_stock=0,
                minimum_stock=minimum_stock,
                maximum_stock=maximum_stock,
                reorder_level=reorder_level,
                reorder_quantity=maximum_stock - minimum_stock,
                last_count_date=datetime.utcnow(),
            )
            self.db.add(level)
            try:
                self.db.flush()
            except IntegrityError:
                raise DuplicateInventoryError(
                    "Stock level already exists for this spare part in this store"
                )

            if initial_stock > 0:
                self.record_movement(
                    part.id,
                    store_id,
                    MovementType.IN,
                    initial_stock,
                    unit_cost=unit_cost,
                    reference_type="INITIALIZATION",
                    reason="Initial stock setup",
                    actor=actor,
                    batch_number=batch_number,
                )

        logger.info(
            f"Initialized stock for part {spare_part_id} at store {store_id} with {initial_stock} units"
        )
        return level

    def record_movement(
        self,
        spare_part_id: int,
        store_id: str,
        movement_type: MovementType,
        quantity: int,
        unit_cost: Optional[float] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        actor: str = SYSTEM_ACTOR,
        batch_id: Optional[int] = None,
        batch_number: Optional[str] = None,
        reserved_quantity: int = 0,
        inbound: bool = False,
    ) -> StockMovement:
        """Apply one movement to the counters and append its ledger row.

        IN and RETURN add available stock and open a batch. OUT, TRANSFER and
        DAMAGED remove stock: ``reserved_quantity`` of the units come out of
        reserved stock, the rest out of available stock. An ``inbound``
        DAMAGED movement instead adds units to damaged stock. For ADJUSTMENT,
        ``quantity`` is the absolute target for current stock.
        """
        movement_type = MovementType(movement_type)
        if quantity < 0 or (quantity == 0 and movement_type != MovementType.ADJUSTMENT):
            raise ValidationError("Movement quantity must be greater than zero")
        if not 0 <= reserved_quantity <= quantity:
            raise ValidationError("reserved_quantity must be between 0 and quantity")
        if reserved_quantity and movement_type not in OUTBOUND_TYPES:
            raise ValidationError("Only outbound movements can draw on reserved stock")

        context = dict(
            reference_type=reference_type,
            reference_id=reference_id,
            reason=reason,
            notes=notes,
            actor=actor,
        )

        with transaction(self.db):
            level = self.get_level(spare_part_id, store_id)
            if movement_type == MovementType.ADJUSTMENT:
                movement = self._adjust(level, quantity, unit_cost, batch_number, context)
            elif movement_type in INBOUND_TYPES or (movement_type == MovementType.DAMAGED and inbound):
                movement = self._receive(level, movement_type, quantity, unit_cost, batch_number, context)
            else:
                movement = self._remove(
                    level, movement_type, quantity, unit_cost, batch_id, reserved_quantity, context
                )

        logger.info(
            f"Stock {movement.movement_type.value} {movement.quantity:+d} for part {spare_part_id} "
            f"at store {store_id}: {movement.previous_stock} -> {movement.new_stock}"
        )
        return movement

    def reserve_units(self, level: InventoryLevel, quantity: int) -> None:
        """Move units from available to reserved stock."""
        if not self._apply(level, available=-quantity, reserved=quantity, touch=False):
            raise InsufficientStockError(quantity, level.available_stock)

    def release_units(self, level: InventoryLevel, quantity: int) -> None:
        """Move units from reserved back to available stock."""
        if not self._apply(level, available=quantity, reserved=-quantity, touch=False):
            raise ValidationError(
                f"Cannot release {quantity} units; only {level.reserved_stock} are reserved"
            )

    def transfer_stock(
        self,
        spare_part_id: int,
        from_store_id: str,
        to_store_id: str,
        quantity: int,
        reason: Optional[str] = None,
        actor: str = SYSTEM_ACTOR,
    ) -> Tuple[StockMovement, StockMovement]:
        with transaction(self.db):
            self.get_level(spare_part_id, to_store_id)
            outgoing = self.record_movement(
                spare_part_id,
                from_store_id,
                MovementType.TRANSFER,
                quantity,
                reference_type="TRANSFER",
                reference_id=to_store_id,
                reason=reason or f"Transfer to store {to_store_id}",
                actor=actor,
            )
            incoming = self.record_movement(
                spare_part_id,
                to_store_id,
                MovementType.IN,
                quantity,
                unit_cost=outgoing.unit_cost,
                reference_type="TRANSFER",
                reference_id=from_store_id,
                reason=reason or f"Transfer from store {from_store_id}",
                actor=actor,
            )
        return outgoing, incoming

    def perform_stock_count(
        self,
        store_id: str,
        lines: Sequence[Dict],
        actor: str = SYSTEM_ACTOR,
    ) -> Dict[str, int]:
        """Reconcile system stock with a physical count, one ADJUSTMENT per variance."""
        adjustments = 0
        total_variance = 0

        with transaction(self.db):
            for line in lines:
                level = self.find_level(line["spare_part_id"], store_id)
                if not level:
                    logger.warning(
                        f"Stock count skipped part {line['spare_part_id']}: no level at store {store_id}"
                    )
                    continue

                system_count = level.current_stock
                variance = line["physical_count"] - system_count
                if variance != 0:
                    self.record_movement(
                        level.spare_part_id,
                        store_id,
                        MovementType.ADJUSTMENT,
                        line["physical_count"],
                        reference_type="STOCK_COUNT",
                        reason="Stock count adjustment",
                        notes=(
                            f"Physical count: {line['physical_count']}, System count: {system_count}. "
                            f"{line.get('notes') or ''}"
                        ).strip(),
                        actor=actor,
                    )
                    adjustments += 1
                    total_variance += abs(variance)

                level.last_count_date = datetime.utcnow()

        logger.info(f"Stock count at store {store_id}: {adjustments} adjustments, variance {total_variance}")
        return {"adjustments": adjustments, "total_variance": total_variance}

    # ---------------------------------------------------------------- helpers

    def _apply(
        self,
        level: InventoryLevel,
        current: int = 0,
        available: int = 0,
        reserved: int = 0,
        damaged: int = 0,
        touch: bool = True,
    ) -> bool:
        """Apply signed counter deltas in one guarded UPDATE.

        Every decremented counter is guarded with ``col >= amount`` in the
        WHERE clause. Returns False when the live row no longer satisfies the
        guard; ``level`` is refreshed either way.
        """
        self.db.flush()
        query = self.db.query(InventoryLevel).filter(InventoryLevel.id == level.id)
        deltas = (
            (InventoryLevel.current_stock, current),
            (InventoryLevel.available_stock, available),
            (InventoryLevel.reserved_stock, reserved),
            (InventoryLevel.damaged_stock, damaged),
        )
        values = {}
        for column, delta in deltas:
            if delta < 0:
                query = query.filter(column >= -delta)
            if delta:
                values[column] = column + delta
        if touch:
            values[InventoryLevel.last_movement_date] = datetime.utcnow()

        updated = query.update(values, synchronize_session=False) if values else 1
        self.db.refresh(level)
        if not updated:
            logger.warning(
                f"Guarded stock update rejected on level {level.id} "
                f"(current {current:+d}, available {available:+d}, reserved {reserved:+d}, damaged {damaged:+d})"
            )
        return updated == 1

    def _take_from_batch(self, batch: StockBatch, quantity: int) -> bool:
        self.db.flush()
        updated = (
            self.db.query(StockBatch)
            .filter(StockBatch.id == batch.id, StockBatch.remaining_quantity >= quantity)
            .update(
                {StockBatch.remaining_quantity: StockBatch.remaining_quantity - quantity},
                synchronize_session=False,
            )
        )
        self.db.refresh(batch)
        return updated == 1

    def _consume_fifo(self, level: InventoryLevel, quantity: int) -> List[Tuple[StockBatch, int]]:
        taken = []
        outstanding = quantity
        for batch in self.fifo_batches(level):
            take = min(batch.remaining_quantity, outstanding)
            if not self._take_from_batch(batch, take):
                raise InsufficientStockError(quantity, quantity - outstanding)
            taken.append((batch, take))
            outstanding -= take
            if outstanding == 0:
                break
        if outstanding:
            raise InsufficientStockError(quantity, quantity - outstanding)
        return taken

    def _open_batch(
        self,
        level: InventoryLevel,
        quantity: int,
        unit_cost: float,
        batch_number: Optional[str],
        source_type: MovementType,
    ) -> StockBatch:
        if not batch_number:
            sequence = self.db.query(StockBatch).filter(StockBatch.inventory_level_id == level.id).count() + 1
            batch_number = f"B{level.id:05d}-{sequence:04d}"
        batch = StockBatch(
            inventory_level_id=level.id,
            batch_number=batch_number,
            unit_cost=unit_cost,
            received_quantity=quantity,
            remaining_quantity=quantity,
            source_type=source_type,
            received_at=datetime.utcnow(),
        )
        self.db.add(batch)
        self.db.flush()
        return batch

    def _receive(
        self,
        level: InventoryLevel,
        movement_type: MovementType,
        quantity: int,
        unit_cost: Optional[float],
        batch_number: Optional[str],
        context: Dict,
    ) -> StockMovement:
        cost = unit_cost if unit_cost is not None else level.spare_part.cost_price
        batch = None
        if movement_type == MovementType.DAMAGED:
            self._apply(level, current=quantity, damaged=quantity)
        else:
            self._apply(level, current=quantity, available=quantity)
            batch = self._open_batch(level, quantity, cost, batch_number, movement_type)
        return self._write_movement(level, movement_type, quantity, cost, batch, context)

    def _remove(
        self,
        level: InventoryLevel,
        movement_type: MovementType,
        quantity: int,
        unit_cost: Optional[float],
        batch_id: Optional[int],
        reserved_quantity: int,
        context: Dict,
    ) -> StockMovement:
        from_available = quantity - reserved_quantity
        if not self._apply(
            level,
            current=-quantity,
            available=-from_available,
            reserved=-reserved_quantity,
        ):
            raise InsufficientStockError(
                quantity, level.available_stock + min(reserved_quantity, level.reserved_stock)
            )

        if batch_id is not None:
            batch = self.db.query(StockBatch).filter(
                StockBatch.id == batch_id,
                StockBatch.inventory_level_id == level.id,
            ).first()
            if not batch:
                raise NotFoundError(f"Batch {batch_id} not found for this stock level")
            if not self._take_from_batch(batch, quantity):
                raise InsufficientStockError(quantity, batch.remaining_quantity)
            taken = [(batch, quantity)]
        else:
            taken = self._consume_fifo(level, quantity)

        cost = unit_cost if unit_cost is not None else _weighted_cost(taken)
        single_batch = taken[0][0] if len(taken) == 1 else None
        return self._write_movement(level, movement_type, -quantity, cost, single_batch, context)

    def _adjust(
        self,
        level: InventoryLevel,
        target: int,
        unit_cost: Optional[float],
        batch_number: Optional[str],
        context: Dict,
    ) -> StockMovement:
        delta = target - level.current_stock
        if delta == 0:
            raise ValidationError(f"Current stock is already {target}")

        if delta > 0:
            cost = unit_cost if unit_cost is not None else level.spare_part.cost_price
            self._apply(level, current=delta, available=delta)
            batch = self._open_batch(level, delta, cost, batch_number, MovementType.ADJUSTMENT)
            return self._write_movement(level, MovementType.ADJUSTMENT, delta, cost, batch, context)

        if not self._apply(level, current=delta, available=delta):
            raise InsufficientStockError(
                -delta,
                level.available_stock,
                detail=(
                    f"Cannot adjust stock to {target}: {level.reserved_stock} reserved and "
                    f"{level.damaged_stock} damaged units must remain"
                ),
            )
        taken = self._consume_fifo(level, -delta)
        cost = unit_cost if unit_cost is not None else _weighted_cost(taken)
        return self._write_movement(level, MovementType.ADJUSTMENT, delta, cost, None, context)

    def _write_movement(
        self,
        level: InventoryLevel,
        movement_type: MovementType,
        signed_quantity: int,
        unit_cost: float,
        batch: Optional[StockBatch],
        context: Dict,
    ) -> StockMovement:
        movement = StockMovement(
            inventory_level_id=level.id,
            spare_part_id=level.spare_part_id,
            store_id=level.store_id,
            batch_id=batch.id if batch else None,
            movement_type=movement_type,
            quantity=signed_quantity,
            previous_stock=level.current_stock - signed_quantity,
            new_stock=level.current_stock,
            unit_cost=unit_cost,
            total_value=round(abs(signed_quantity) * unit_cost, 2),
            reference_type=context.get("reference_type"),
            reference_id=context.get("reference_id"),
            reason=context.get("reason"),
            notes=context.get("notes"),
            created_by=context.get("actor") or SYSTEM_ACTOR,
            movement_date=datetime.utcnow(),
        )
        self.db.add(movement)
        self.db.flush()
        return movement

# Dependency injection
def get_stock_ledger(db: Session = Depends(get_db)) -> StockLedger:
    return StockLedger(db)
