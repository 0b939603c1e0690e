from dataclasses import dataclass, field
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from apps.inventory.models import MovementType, StockMovement
from apps.inventory.services import StockLedger
from core.database import transaction
from core.dependencies import SYSTEM_ACTOR
from core.exceptions import InsufficientStockError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class BatchAllocation:
    batch_id: int
    batch_number: str
    quantity: int
    unit_cost: float
    movement_id: int


@dataclass
class AllocationResult:
    issued_quantity: int = 0
    total_cost: float = 0.0
    batches: List[BatchAllocation] = field(default_factory=list)
    movements: List[StockMovement] = field(default_factory=list)

    @property
    def batch_numbers(self) -> List[str]:
        return [batch.batch_number for batch in self.batches]


class FifoAllocator:
    """Consumes the oldest stock batches first.

    Every batch slice is posted through ``StockLedger.record_movement`` as
    its own OUT movement, so the guarded UPDATE re-validates stock at the
    moment of consumption no matter what an earlier availability check saw.
    """

    def __init__(self, db: Session, ledger: Optional[StockLedger] = None):
        self.db = db
        self.ledger = ledger or StockLedger(db)

    def allocate(
        self,
        spare_part_id: int,
        store_id: str,
        quantity: int,
        reserved_quantity: int = 0,
        reference_type: str = "SERVICE",
        reference_id: Optional[str] = None,
        actor: str = SYSTEM_ACTOR,
        reason: str = "Issued to technician",
    ) -> AllocationResult:
        """Issue ``quantity`` units, ``reserved_quantity`` of them already reserved.

        Either the full quantity is allocated or nothing is: a shortfall
        raises ``InsufficientStockError`` and the enclosing transaction
        rolls back every slice posted so far.
        """
        if quantity <= 0:
            raise ValidationError("Issue quantity must be greater than zero")
        if not 0 <= reserved_quantity <= quantity:
            raise ValidationError("reserved_quantity must be between 0 and quantity")

        result = AllocationResult()
        with transaction(self.db):
            level = self.ledger.get_level(spare_part_id, store_id)
            issuable = level.available_stock + min(reserved_quantity, level.reserved_stock)
            if issuable < quantity:
                raise InsufficientStockError(quantity, issuable)

            batches = self.ledger.fifo_batches(level)
            if sum(batch.remaining_quantity for batch in batches) < quantity:
                raise InsufficientStockError(quantity, sum(b.remaining_quantity for b in batches))

            outstanding = quantity
            reserved_left = reserved_quantity
            for batch in batches:
                take = min(batch.remaining_quantity, outstanding)
                from_reserved = min(reserved_left, take)
                movement = self.ledger.record_movement(
                    spare_part_id,
                    store_id,
                    MovementType.OUT,
                    take,
                    unit_cost=batch.unit_cost,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    reason=reason,
                    notes=f"FIFO batch {batch.batch_number}",
                    actor=actor,
                    batch_id=batch.id,
                    reserved_quantity=from_reserved,
                )
                result.batches.append(
                    BatchAllocation(
                        batch_id=batch.id,
                        batch_number=batch.batch_number,
                        quantity=take,
                        unit_cost=batch.unit_cost,
                        movement_id=movement.id,
                    )
                )
                result.movements.append(movement)
                result.issued_quantity += take
                result.total_cost += take * batch.unit_cost

                outstanding -= take
                reserved_left -= from_reserved
                if outstanding == 0:
                    break

        result.total_cost = round(result.total_cost, 2)
        logger.info(
            f"Allocated {result.issued_quantity} of part {spare_part_id} at store {store_id} "
            f"from {len(result.batches)} batch(es), cost {result.total_cost}"
        )
        return result
