from sqlalchemy.orm import Session
from typing import Dict, List, Optional, Sequence, Tuple
from fastapi import Depends
from datetime import datetime
from dateutil.relativedelta import relativedelta
import logging

from apps.inventory.models import MovementType
from apps.inventory.reservations import ReservationManager
from apps.inventory.services import StockLedger
from apps.jobs.models import JobStatus
from apps.jobs.services import JobService
from apps.outward_flow.allocator import AllocationResult, FifoAllocator
from apps.outward_flow.costing import CostEngine
from apps.outward_flow.models import (
    ApprovalDecision,
    ApprovalHistory,
    InstalledPart,
    IssuedBatch,
    RequestStatus,
    ReturnCondition,
    SparePartRequest,
    TechnicianLimit,
    Urgency,
)
from apps.outward_flow.schemas import (
    PartInstallCreate,
    PartRequestCreate,
    PartReturnItem,
    TechnicianLimitCreate,
)
from apps.spare_parts.services import SparePartService
from core.config import Settings, settings as default_settings
from core.database import get_db, transaction
from core.dependencies import SYSTEM_ACTOR
from core.exceptions import (
    DomainError,
    InsufficientStockError,
    InvalidStateTransitionError,
    NotFoundError,
    PolicyViolationError,
    ValidationError,
)

logger = logging.getLogger(__name__)

CANCELLABLE = (RequestStatus.PENDING, RequestStatus.APPROVED)
RETURNABLE = (RequestStatus.ISSUED, RequestStatus.INSTALLED)


class TechnicianLimitStore:
    def __init__(self, db: Session):
        self.db = db

    def get_limit(
        self,
        technician_id: str,
        spare_part_id: Optional[int] = None,
        category_id: Optional[str] = None,
    ) -> Optional[TechnicianLimit]:
        """Applicable active limit; a part-specific limit wins over a category one."""
        query = self.db.query(TechnicianLimit).filter(
            TechnicianLimit.technician_id == technician_id,
            TechnicianLimit.is_active.is_(True),
        )
        if spare_part_id is not None:
            limit = query.filter(TechnicianLimit.spare_part_id == spare_part_id) \
                .order_by(TechnicianLimit.id.desc()).first()
            if limit:
                return limit
        if category_id:
            return query.filter(TechnicianLimit.category_id == category_id) \
                .order_by(TechnicianLimit.id.desc()).first()
        return None

    def create_limit(self, limit_data: TechnicianLimitCreate) -> TechnicianLimit:
        """Add a limit; it supersedes any active limit with the same scope."""
        with transaction(self.db):
            if limit_data.spare_part_id is not None:
                SparePartService(self.db).get_spare_part(limit_data.spare_part_id)
                scope = TechnicianLimit.spare_part_id == limit_data.spare_part_id
            else:
                scope = TechnicianLimit.category_id == limit_data.category_id
            superseded = self.db.query(TechnicianLimit).filter(
                TechnicianLimit.technician_id == limit_data.technician_id,
                TechnicianLimit.is_active.is_(True),
                scope,
            ).all()
            for old in superseded:
                old.is_active = False

            db_limit = TechnicianLimit(**limit_data.model_dump(), is_active=True)
            self.db.add(db_limit)
            self.db.flush()

        logger.info(
            f"Technician limit {db_limit.id} set for {db_limit.technician_id} "
            f"(part {db_limit.spare_part_id}, category {db_limit.category_id})"
        )
        return db_limit

    def list_limits(self, technician_id: Optional[str] = None, active_only: bool = True) -> List[TechnicianLimit]:
        query = self.db.query(TechnicianLimit)
        if technician_id:
            query = query.filter(TechnicianLimit.technician_id == technician_id)
        if active_only:
            query = query.filter(TechnicianLimit.is_active.is_(True))
        return query.order_by(TechnicianLimit.technician_id, TechnicianLimit.id).all()


class OutwardFlowService:
    """Request/approval workflow for parts leaving the store.

    Pending -> Approved -> Issued -> Installed -> Returned, with Rejected
    reachable from Pending and Cancelled from Pending or Approved. Status
    changes are guarded UPDATEs on the current status, so two callers cannot
    both move the same request out of one state.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings
        self.jobs = JobService(db, self.settings)
        self.parts = SparePartService(db)
        self.ledger = StockLedger(db)
        self.reservations = ReservationManager(db, self.ledger, self.settings)
        self.allocator = FifoAllocator(db, self.ledger)
        self.costs = CostEngine(db, self.jobs, self.settings)
        self.limits = TechnicianLimitStore(db)

    # ------------------------------------------------------------------ reads

    def get_request(self, request_id: int) -> SparePartRequest:
        request = (
            self.db.query(SparePartRequest)
            .filter(SparePartRequest.id == request_id)
            .populate_existing()
            .first()
        )
        if not request:
            raise NotFoundError(f"Part request {request_id} not found")
        return request

    def list_requests(
        self,
        skip: int = 0,
        limit: int = 100,
        status: Optional[RequestStatus] = None,
        urgency: Optional[Urgency] = None,
        technician_id: Optional[str] = None,
        store_id: Optional[str] = None,
        service_request_id: Optional[int] = None,
        spare_part_id: Optional[int] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> Tuple[List[SparePartRequest], int]:
        query = self.db.query(SparePartRequest)

        if status:
            query = query.filter(SparePartRequest.status == status)
        if urgency:
            query = query.filter(SparePartRequest.urgency == urgency)
        if technician_id:
            query = query.filter(SparePartRequest.requested_by == technician_id)
        if store_id:
            query = query.filter(SparePartRequest.store_id == store_id)
        if service_request_id:
            query = query.filter(SparePartRequest.service_request_id == service_request_id)
        if spare_part_id:
            query = query.filter(SparePartRequest.spare_part_id == spare_part_id)
        if created_from:
            query = query.filter(SparePartRequest.created_at >= created_from)
        if created_to:
            query = query.filter(SparePartRequest.created_at <= created_to)

        total = query.count()
        requests = query.order_by(SparePartRequest.created_at.desc(), SparePartRequest.id.desc()) \
            .offset(skip).limit(limit).all()
        return requests, total

    def get_approval_history(self, request_id: int) -> List[ApprovalHistory]:
        self.get_request(request_id)
        return (
            self.db.query(ApprovalHistory)
            .filter(ApprovalHistory.request_id == request_id)
            .order_by(ApprovalHistory.id)
            .all()
        )

    def list_installed_parts(self, service_request_id: int, include_removed: bool = True) -> List[InstalledPart]:
        self.jobs.get_job(service_request_id)
        query = self.db.query(InstalledPart).filter(InstalledPart.service_request_id == service_request_id)
        if not include_removed:
            query = query.filter(InstalledPart.removal_date.is_(None))
        return query.order_by(InstalledPart.installed_at, InstalledPart.id).all()

    def required_approval_level(self, estimated_cost: float) -> int:
        """1 up to the first threshold, one more level per threshold exceeded."""
        level = 1
        for threshold in sorted(self.settings.APPROVAL_LEVEL_THRESHOLDS):
            if estimated_cost > threshold:
                level += 1
        return level

    def within_limit(self, limit: Optional[TechnicianLimit], estimated_cost: float, quantity: int) -> bool:
        """Whether the technician may take this request without a human approver.

        Raises PolicyViolationError when a hard cap is exceeded and the limit
        leaves no approval path.
        """
        if limit is None:
            return estimated_cost <= self.settings.DEFAULT_AUTO_APPROVE_LIMIT

        over_value = limit.max_value_per_request is not None and estimated_cost > limit.max_value_per_request
        over_quantity = limit.max_quantity_per_request is not None and quantity > limit.max_quantity_per_request
        if over_value or over_quantity:
            if not limit.requires_approval:
                raise PolicyViolationError(
                    f"Request exceeds the limit of technician {limit.technician_id} "
                    f"(value {estimated_cost}, quantity {quantity}) and cannot be escalated"
                )
            return False

        if not limit.requires_approval:
            return True
        return limit.auto_approve_below is not None and estimated_cost <= limit.auto_approve_below

    # ------------------------------------------------------------ transitions

    def create_request(self, request_data: PartRequestCreate, actor: str = SYSTEM_ACTOR) -> SparePartRequest:
        technician_id = request_data.technician_id or actor
        quantity = request_data.requested_quantity

        with transaction(self.db):
            job = self.jobs.get_job(request_data.service_request_id)
            part = self.parts.get_active_spare_part(request_data.spare_part_id)
            estimated_cost = round(part.selling_price * quantity, 2)

            availability = self.reservations.check_availability(part.id, job.store_id, quantity)
            limit = self.limits.get_limit(technician_id, part.id, part.category_id)
            within_limit = self.within_limit(limit, estimated_cost, quantity)

            request = SparePartRequest(
                service_request_id=job.id,
                spare_part_id=part.id,
                store_id=job.store_id,
                requested_by=technician_id,
                requested_quantity=quantity,
                urgency=request_data.urgency,
                justification=request_data.justification,
                estimated_cost=estimated_cost,
                approval_level=1 if within_limit else self.required_approval_level(estimated_cost),
                status=RequestStatus.PENDING,
            )
            self.db.add(request)
            self.db.flush()

            in_stock = availability.available
            available_quantity = availability.available_quantity
            approved = False
            if within_limit and in_stock:
                try:
                    self._reserve(request)
                except InsufficientStockError as exc:
                    # Another request took the stock after the availability read
                    logger.warning(f"Part request {request.id} lost its stock before reserving: {exc.detail}")
                    in_stock = False
                    available_quantity = exc.available
                else:
                    self._approve(
                        request,
                        SYSTEM_ACTOR,
                        available_quantity,
                        comments="Auto-approved within technician limit",
                    )
                    approved = True

            if not approved:
                self._record_decision(
                    request,
                    SYSTEM_ACTOR,
                    ApprovalDecision.PENDING,
                    available_quantity,
                    comments="Awaiting approval" if in_stock else "Awaiting stock",
                )
                if not in_stock:
                    self.jobs.set_job_status(job.id, JobStatus.WAITING_FOR_PARTS)

        logger.info(
            f"Part request {request.id} by {technician_id} for {quantity} x part {part.id} "
            f"on job {job.job_number}: {request.status.value}"
        )
        return request

    def approve_request(
        self,
        request_id: int,
        approver_id: str,
        comments: Optional[str] = None,
        conditions: Optional[str] = None,
    ) -> SparePartRequest:
        with transaction(self.db):
            request = self.get_request(request_id)
            self._require_status(request, RequestStatus.APPROVED, RequestStatus.PENDING)

            # Stock may have moved since the request was created
            availability = self.reservations.check_availability(
                request.spare_part_id, request.store_id, request.requested_quantity
            )
            if not availability.available:
                raise InsufficientStockError(request.requested_quantity, availability.available_quantity)

            self._reserve(request)
            self._approve(request, approver_id, availability.available_quantity, comments or "Approved", conditions)

        logger.info(f"Part request {request.id} approved by {approver_id}")
        return request

    def reject_request(self, request_id: int, approver_id: str, reason: str) -> SparePartRequest:
        with transaction(self.db):
            request = self.get_request(request_id)
            self._transition(request, (RequestStatus.PENDING,), RequestStatus.REJECTED)
            request.rejection_reason = reason

            level = self.ledger.find_level(request.spare_part_id, request.store_id)
            self._record_decision(
                request,
                approver_id,
                ApprovalDecision.REJECTED,
                level.available_stock if level else 0,
                comments=reason,
            )

        logger.info(f"Part request {request.id} rejected by {approver_id}: {reason}")
        return request

    def cancel_request(self, request_id: int, actor: str, reason: Optional[str] = None) -> SparePartRequest:
        with transaction(self.db):
            request = self.get_request(request_id)
            self._transition(request, CANCELLABLE, RequestStatus.CANCELLED)
            request.cancelled_at = datetime.utcnow()
            request.cancelled_by = actor
            request.cancellation_reason = reason
            self.reservations.release_for_request(request.id)
            self.db.flush()

        logger.info(f"Part request {request.id} cancelled by {actor}")
        return request

    def issue_request(self, request_id: int, actor: str = SYSTEM_ACTOR) -> AllocationResult:
        with transaction(self.db):
            request = self.get_request(request_id)
            result = self._issue(request, actor)
        return result

    def install_part(self, install_data: PartInstallCreate, actor: str = SYSTEM_ACTOR) -> InstalledPart:
        technician_id = install_data.technician_id or actor

        with transaction(self.db):
            request = (
                self.db.query(SparePartRequest)
                .filter(
                    SparePartRequest.service_request_id == install_data.service_request_id,
                    SparePartRequest.spare_part_id == install_data.spare_part_id,
                    SparePartRequest.status == RequestStatus.ISSUED,
                )
                .order_by(SparePartRequest.id)
                .populate_existing()
                .first()
            )
            if not request:
                raise NotFoundError(
                    f"Part {install_data.spare_part_id} was not issued for service job "
                    f"{install_data.service_request_id}"
                )
            held = (request.issued_quantity or 0) - request.returned_quantity
            if install_data.quantity > held:
                raise ValidationError(
                    f"Installation quantity {install_data.quantity} exceeds the {held} unit(s) "
                    f"issued and not returned"
                )

            replaced = None
            if install_data.replaced_part_id is not None:
                replaced = self._get_installed_part(install_data.replaced_part_id)
                if replaced.service_request_id != request.service_request_id:
                    raise ValidationError(
                        f"Installed part {replaced.id} belongs to service job {replaced.service_request_id}"
                    )
                if replaced.removal_date is not None:
                    raise ValidationError(f"Installed part {replaced.id} was already removed")

            part = request.spare_part
            unit_cost = install_data.unit_cost
            if unit_cost is None:
                unit_cost = round(request.issued_cost / request.issued_quantity, 2)
            installed_at = datetime.utcnow()
            warranty_months = part.warranty_months or 0

            installation = InstalledPart(
                service_request_id=request.service_request_id,
                spare_part_id=part.id,
                request_id=request.id,
                technician_id=technician_id,
                store_id=request.store_id,
                batch_number=install_data.batch_number or next(iter(request.batch_numbers), None),
                serial_number=install_data.serial_number,
                quantity=install_data.quantity,
                unit_cost=unit_cost,
                total_cost=round(install_data.quantity * unit_cost, 2),
                selling_price=part.selling_price,
                total_revenue=round(install_data.quantity * part.selling_price, 2),
                installed_at=installed_at,
                installation_notes=install_data.installation_notes,
                warranty_months=warranty_months,
                warranty_expiry=installed_at + relativedelta(months=warranty_months) if warranty_months else None,
                replaced_part_id=install_data.replaced_part_id,
            )
            self.db.add(installation)

            if replaced:
                replaced.removal_date = installed_at
                replaced.removal_reason = "Replaced with new part"
                replaced.removed_by = technician_id

            request.installed_quantity = install_data.quantity
            self._transition(request, (RequestStatus.ISSUED,), RequestStatus.INSTALLED)
            self.costs.calculate_service_cost(request.service_request_id, actor)

        logger.info(
            f"Installed {installation.quantity} x part {part.id} on job {installation.service_request_id} "
            f"by {technician_id}"
        )
        return installation

    def return_parts(
        self,
        service_request_id: int,
        items: Sequence[PartReturnItem],
        technician_id: Optional[str] = None,
        actor: str = SYSTEM_ACTOR,
    ) -> List[Dict]:
        """Return unused parts to stock, item by item.

        Every item is validated before anything is written; items that fail
        are reported with their error and the rest are applied together.
        """
        technician_id = technician_id or actor
        self.jobs.get_job(service_request_id)

        results: List[Optional[Dict]] = [None] * len(items)
        accepted = []
        claimed: Dict[int, int] = {}

        for index, item in enumerate(items):
            try:
                request = self._returnable_request(service_request_id, item, claimed)
                self.ledger.get_level(request.spare_part_id, request.store_id)
            except DomainError as exc:
                logger.warning(
                    f"Return of part {item.spare_part_id} on job {service_request_id} rejected: {exc.detail}"
                )
                results[index] = {
                    "spare_part_id": item.spare_part_id,
                    "quantity": item.quantity,
                    "condition": item.condition,
                    "status": "Failed",
                    "error": exc.kind,
                    "detail": exc.detail,
                }
                continue
            claimed[request.id] = claimed.get(request.id, 0) + item.quantity
            accepted.append((index, item, request))

        if accepted:
            with transaction(self.db):
                for index, item, request in accepted:
                    self._return_item(request, item, technician_id)
                    results[index] = {
                        "spare_part_id": item.spare_part_id,
                        "quantity": item.quantity,
                        "condition": item.condition,
                        "status": "Processed",
                        "request_id": request.id,
                        "request_status": request.status,
                    }
                self.costs.calculate_service_cost(service_request_id, actor)

        logger.info(
            f"Processed {len(accepted)} of {len(items)} return item(s) for job {service_request_id}"
        )
        return results

    # ---------------------------------------------------------------- helpers

    def _require_status(self, request: SparePartRequest, target: RequestStatus, *allowed: RequestStatus) -> None:
        if request.status not in allowed:
            raise InvalidStateTransitionError(
                f"Part request {request.id} is {request.status.value}; cannot move to {target.value}"
            )

    def _transition(
        self,
        request: SparePartRequest,
        allowed: Sequence[RequestStatus],
        target: RequestStatus,
    ) -> None:
        """Move to ``target`` only if the stored status is still one of ``allowed``."""
        self._require_status(request, target, *allowed)
        self.db.flush()
        updated = (
            self.db.query(SparePartRequest)
            .filter(SparePartRequest.id == request.id, SparePartRequest.status.in_(allowed))
            .update(
                {SparePartRequest.status: target, SparePartRequest.updated_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        self.db.refresh(request)
        if not updated:
            raise InvalidStateTransitionError(
                f"Part request {request.id} is {request.status.value}; cannot move to {target.value}"
            )

    def _record_decision(
        self,
        request: SparePartRequest,
        approver_id: str,
        decision: ApprovalDecision,
        available_stock: int,
        comments: Optional[str] = None,
        conditions: Optional[str] = None,
    ) -> ApprovalHistory:
        entry = ApprovalHistory(
            request_id=request.id,
            level=request.approval_level,
            approver_id=approver_id,
            decision=decision,
            comments=comments,
            conditions=conditions,
            request_value=request.estimated_cost,
            available_stock=available_stock,
            processed_at=datetime.utcnow(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def _reserve(self, request: SparePartRequest) -> None:
        """Claim the requested units; raises InsufficientStockError without writing if the stock is gone."""
        self.reservations.reserve(
            request.id,
            request.spare_part_id,
            request.store_id,
            request.requested_quantity,
            reserved_by=SYSTEM_ACTOR,
            reserved_for=request.requested_by,
        )

    def _approve(
        self,
        request: SparePartRequest,
        approver_id: str,
        available_stock: int,
        comments: Optional[str] = None,
        conditions: Optional[str] = None,
    ) -> None:
        self._transition(request, (RequestStatus.PENDING,), RequestStatus.APPROVED)
        request.approved_by = approver_id
        request.approved_at = datetime.utcnow()
        self._record_decision(
            request, approver_id, ApprovalDecision.APPROVED, available_stock, comments, conditions
        )
        self.jobs.set_job_status(request.service_request_id, JobStatus.IN_PROGRESS)

        if self.settings.AUTO_ISSUE_ON_APPROVAL:
            self._issue(request, SYSTEM_ACTOR)

    def _issue(self, request: SparePartRequest, actor: str) -> AllocationResult:
        self._require_status(request, RequestStatus.ISSUED, RequestStatus.APPROVED)

        reservation = self.reservations.active_for_request(request.id)
        reserved_quantity = min(reservation.reserved_quantity, request.requested_quantity) if reservation else 0

        result = self.allocator.allocate(
            request.spare_part_id,
            request.store_id,
            request.requested_quantity,
            reserved_quantity=reserved_quantity,
            reference_type="SERVICE_REQUEST",
            reference_id=str(request.id),
            actor=actor,
            reason=f"Issued for service job {request.service_request_id}",
        )
        if reservation:
            self.reservations.consume(reservation)

        self._transition(request, (RequestStatus.APPROVED,), RequestStatus.ISSUED)
        request.issued_quantity = result.issued_quantity
        request.issued_cost = result.total_cost
        request.issued_at = datetime.utcnow()
        request.issued_by = actor
        for sequence, allocation in enumerate(result.batches, start=1):
            self.db.add(
                IssuedBatch(
                    request_id=request.id,
                    batch_id=allocation.batch_id,
                    movement_id=allocation.movement_id,
                    sequence=sequence,
                    batch_number=allocation.batch_number,
                    quantity=allocation.quantity,
                    unit_cost=allocation.unit_cost,
                )
            )
        self.db.flush()
        self.db.refresh(request)

        logger.info(
            f"Issued {result.issued_quantity} x part {request.spare_part_id} for request {request.id} "
            f"(batches {', '.join(result.batch_numbers)})"
        )
        return result

    def _get_installed_part(self, installed_part_id: int) -> InstalledPart:
        installed = self.db.query(InstalledPart).filter(InstalledPart.id == installed_part_id).first()
        if not installed:
            raise NotFoundError(f"Installed part {installed_part_id} not found")
        return installed

    def _returnable_request(
        self,
        service_request_id: int,
        item: PartReturnItem,
        claimed: Dict[int, int],
    ) -> SparePartRequest:
        """Oldest issued or installed request with enough units left to return."""
        candidates = (
            self.db.query(SparePartRequest)
            .filter(
                SparePartRequest.service_request_id == service_request_id,
                SparePartRequest.spare_part_id == item.spare_part_id,
                SparePartRequest.status.in_(RETURNABLE),
            )
            .order_by(SparePartRequest.id)
            .populate_existing()
            .all()
        )
        if not candidates:
            raise NotFoundError(
                f"Part {item.spare_part_id} was not issued for service job {service_request_id}"
            )

        outstanding = 0
        for request in candidates:
            outstanding = (
                (request.issued_quantity or 0)
                - request.installed_quantity
                - request.returned_quantity
                - claimed.get(request.id, 0)
            )
            if item.quantity <= outstanding:
                return request
        raise ValidationError(
            f"Return quantity {item.quantity} exceeds the {max(outstanding, 0)} unit(s) still out "
            f"for part {item.spare_part_id}"
        )

    def _return_item(self, request: SparePartRequest, item: PartReturnItem, technician_id: str) -> None:
        unit_cost = item.unit_cost
        if unit_cost is None and request.issued_quantity:
            unit_cost = round(request.issued_cost / request.issued_quantity, 2)

        good = item.condition == ReturnCondition.GOOD
        self.ledger.record_movement(
            request.spare_part_id,
            request.store_id,
            MovementType.RETURN if good else MovementType.DAMAGED,
            item.quantity,
            unit_cost=unit_cost,
            reference_type="SERVICE_RETURN",
            reference_id=str(request.id),
            reason=item.reason or f"Returned in {item.condition.value.lower()} condition",
            notes=f"Returned by technician {technician_id}: {item.condition.value}",
            actor=technician_id,
            inbound=not good,
        )

        request.returned_quantity += item.quantity
        request.returned_at = datetime.utcnow()
        request.returned_by = technician_id
        request.return_reason = item.reason
        request.return_condition = item.condition

        # Units still held after a partial return stay installable while nothing is installed
        if request.returned_quantity == request.issued_quantity:
            target = RequestStatus.RETURNED
        elif request.installed_quantity:
            target = RequestStatus.INSTALLED
        else:
            target = request.status
        if request.status != target:
            self._transition(request, RETURNABLE, target)
        else:
            self.db.flush()


# Dependency injection
def get_outward_flow_service(db: Session = Depends(get_db)) -> OutwardFlowService:
    return OutwardFlowService(db)


def get_technician_limit_store(db: Session = Depends(get_db)) -> TechnicianLimitStore:
    return TechnicianLimitStore(db)
