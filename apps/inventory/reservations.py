from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from apps.inventory.models import StockReservation, ReservationStatus
from apps.inventory.services import StockLedger
from core.config import Settings, settings as default_settings
from core.database import transaction
from core.dependencies import SYSTEM_ACTOR
from core.exceptions import InvalidStateTransitionError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class StockAvailability:
    spare_part_id: int
    store_id: str
    requested_quantity: int
    available_quantity: int
    reserved_quantity: int
    total_stock: int

    @property
    def available(self) -> bool:
        return self.available_quantity >= self.requested_quantity


class ReservationManager:
    """Short-lived claims against available stock, one per part request.

    Expired reservations stop counting as soon as they are read: every
    availability check and lookup first expires stale rows for the level.
    """

    def __init__(self, db: Session, ledger: Optional[StockLedger] = None, settings: Optional[Settings] = None):
        self.db = db
        self.ledger = ledger or StockLedger(db)
        self.settings = settings or default_settings

    def check_availability(self, spare_part_id: int, store_id: str, quantity: int) -> StockAvailability:
        level = self.ledger.find_level(spare_part_id, store_id)
        if not level:
            return StockAvailability(spare_part_id, store_id, quantity, 0, 0, 0)

        self.expire_stale(inventory_level_id=level.id)
        return StockAvailability(
            spare_part_id=spare_part_id,
            store_id=store_id,
            requested_quantity=quantity,
            available_quantity=level.available_stock,
            reserved_quantity=level.reserved_stock,
            total_stock=level.current_stock,
        )

    def reserve(
        self,
        request_id: int,
        spare_part_id: int,
        store_id: str,
        quantity: int,
        reserved_by: str = SYSTEM_ACTOR,
        reserved_for: Optional[str] = None,
    ) -> StockReservation:
        if quantity <= 0:
            raise ValidationError("Reservation quantity must be greater than zero")

        with transaction(self.db):
            if self.active_for_request(request_id):
                raise InvalidStateTransitionError(f"Request {request_id} already holds an active reservation")

            level = self.ledger.get_level(spare_part_id, store_id)
            self.expire_stale(inventory_level_id=level.id)
            self.ledger.reserve_units(level, quantity)

            now = datetime.utcnow()
            reservation = StockReservation(
                request_id=request_id,
                inventory_level_id=level.id,
                spare_part_id=spare_part_id,
                store_id=store_id,
                reserved_quantity=quantity,
                reserved_by=reserved_by,
                reserved_for=reserved_for,
                reserved_at=now,
                expires_at=now + timedelta(hours=self.settings.RESERVATION_TTL_HOURS),
                status=ReservationStatus.ACTIVE,
            )
            self.db.add(reservation)
            self.db.flush()

        logger.info(f"Reserved {quantity} of part {spare_part_id} at store {store_id} for request {request_id}")
        return reservation

    def active_for_request(self, request_id: int) -> Optional[StockReservation]:
        reservation = (
            self.db.query(StockReservation)
            .filter(
                StockReservation.request_id == request_id,
                StockReservation.status == ReservationStatus.ACTIVE,
            )
            .populate_existing()
            .first()
        )
        if reservation and reservation.expires_at <= datetime.utcnow():
            with transaction(self.db):
                self._resolve(reservation, ReservationStatus.EXPIRED)
            logger.info(f"Reservation {reservation.id} for request {request_id} expired")
            return None
        return reservation

    def release(self, reservation: StockReservation) -> StockReservation:
        """Hand the reserved units back to available stock."""
        with transaction(self.db):
            self._resolve(reservation, ReservationStatus.RELEASED)
        logger.info(f"Released reservation {reservation.id} for request {reservation.request_id}")
        return reservation

    def release_for_request(self, request_id: int) -> Optional[StockReservation]:
        with transaction(self.db):
            reservation = self.active_for_request(request_id)
            if reservation:
                self.release(reservation)
        return reservation

    def consume(self, reservation: StockReservation) -> StockReservation:
        """Mark as consumed; the issuing OUT movements already drew down reserved stock."""
        if reservation.status != ReservationStatus.ACTIVE:
            raise InvalidStateTransitionError(
                f"Reservation {reservation.id} is {reservation.status.value}, not Active"
            )
        reservation.status = ReservationStatus.CONSUMED
        reservation.resolved_at = datetime.utcnow()
        self.db.flush()
        return reservation

    def expire_stale(self, now: Optional[datetime] = None, inventory_level_id: Optional[int] = None) -> int:
        """Expire active reservations past their deadline; returns how many."""
        now = now or datetime.utcnow()
        query = self.db.query(StockReservation).filter(
            StockReservation.status == ReservationStatus.ACTIVE,
            StockReservation.expires_at <= now,
        )
        if inventory_level_id is not None:
            query = query.filter(StockReservation.inventory_level_id == inventory_level_id)

        stale: List[StockReservation] = query.order_by(StockReservation.id).all()
        if not stale:
            return 0

        with transaction(self.db):
            for reservation in stale:
                self._resolve(reservation, ReservationStatus.EXPIRED)
        logger.info(f"Expired {len(stale)} stale stock reservation(s)")
        return len(stale)

    def _resolve(self, reservation: StockReservation, status: ReservationStatus) -> None:
        level = self.ledger.get_level(reservation.spare_part_id, reservation.store_id)
        self.ledger.release_units(level, reservation.reserved_quantity)
        reservation.status = status
        reservation.resolved_at = datetime.utcnow()
        self.db.flush()


def sweep_expired_reservations(session_factory) -> int:
    """Scheduler entry point: expire stale reservations in a fresh session."""
    db = session_factory()
    try:
        return ReservationManager(db).expire_stale()
    finally:
        db.close()
