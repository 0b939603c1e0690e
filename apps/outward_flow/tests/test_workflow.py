from datetime import datetime, timedelta

import pytest
from dateutil.relativedelta import relativedelta

from apps.inventory.models import MovementType, ReservationStatus, StockMovement, StockReservation
from apps.jobs.models import JobStatus
from apps.outward_flow.models import (
    ApprovalDecision,
    IssuedBatch,
    RequestStatus,
    ReturnCondition,
    SparePartRequest,
    Urgency,
)
from apps.outward_flow.schemas import (
    PartInstallCreate,
    PartRequestCreate,
    PartReturnItem,
    TechnicianLimitCreate,
)
from apps.outward_flow.services import OutwardFlowService
from core.exceptions import (
    InsufficientStockError,
    InvalidStateTransitionError,
    NotFoundError,
    PolicyViolationError,
    ValidationError,
)


@pytest.fixture()
def service(db_session, test_settings):
    return OutwardFlowService(db_session, test_settings)


@pytest.fixture()
def part(make_part):
    return make_part(cost_price=60.0, selling_price=100.0, warranty_months=6)


@pytest.fixture()
def job(make_job):
    return make_job(store_id="S1")


@pytest.fixture()
def stocked(part, stock):
    return stock(part, store_id="S1", quantity=10, minimum=5, maximum=50, reorder=8)


def _request(service, job, part, quantity, technician="tech-1", **extra):
    return service.create_request(
        PartRequestCreate(
            service_request_id=job.id,
            spare_part_id=part.id,
            technician_id=technician,
            requested_quantity=quantity,
            **extra,
        )
    )


def _level(service, part):
    level = service.ledger.get_level(part.id, "S1")
    return level.current_stock, level.available_stock, level.reserved_stock, level.damaged_stock


def _issued(service, job, part, quantity=3):
    request = _request(service, job, part, quantity)
    service.issue_request(request.id)
    return service.get_request(request.id)


def test_small_request_is_auto_approved_and_reserved(service, job, part, stocked):
    request = _request(service, job, part, 3)

    assert request.status == RequestStatus.APPROVED
    assert request.estimated_cost == 300.0
    assert request.approval_level == 1
    assert request.approved_by == "system"
    assert _level(service, part) == (10, 7, 3, 0)

    reservation = service.reservations.active_for_request(request.id)
    assert reservation.reserved_quantity == 3
    assert reservation.reserved_for == "tech-1"

    history = service.get_approval_history(request.id)
    assert [(h.approver_id, h.decision, h.available_stock) for h in history] == [
        ("system", ApprovalDecision.APPROVED, 10)
    ]
    assert service.jobs.get_job(job.id).status == JobStatus.IN_PROGRESS


def test_issue_consumes_the_reservation(service, db_session, job, part, stocked):
    request = _request(service, job, part, 3)

    result = service.issue_request(request.id, actor="storekeeper")

    assert result.issued_quantity == 3
    assert result.total_cost == 180.0
    assert _level(service, part) == (7, 7, 0, 0)

    issue_movements = db_session.query(StockMovement).filter(
        StockMovement.reference_type == "SERVICE_REQUEST"
    ).all()
    assert len(issue_movements) == 1
    assert issue_movements[0].movement_type == MovementType.OUT
    assert issue_movements[0].quantity == -3

    request = service.get_request(request.id)
    assert request.status == RequestStatus.ISSUED
    assert (request.issued_quantity, request.issued_cost, request.issued_by) == (3, 180.0, "storekeeper")
    assert len(request.batch_numbers) == 1
    batches = db_session.query(IssuedBatch).filter(IssuedBatch.request_id == request.id).all()
    assert sum(batch.quantity for batch in batches) == request.issued_quantity

    reservation = db_session.query(StockReservation).filter(StockReservation.request_id == request.id).one()
    assert reservation.status == ReservationStatus.CONSUMED


def test_request_beyond_stock_waits_for_parts(service, job, part, stocked):
    request = _request(service, job, part, 20)

    assert request.status == RequestStatus.PENDING
    assert request.approval_level == 2
    assert service.reservations.active_for_request(request.id) is None
    assert _level(service, part) == (10, 10, 0, 0)
    assert service.jobs.get_job(job.id).status == JobStatus.WAITING_FOR_PARTS

    history = service.get_approval_history(request.id)
    assert history[0].decision == ApprovalDecision.PENDING
    assert history[0].comments == "Awaiting stock"


def test_request_over_default_limit_needs_manual_approval(service, job, part, stocked):
    request = _request(service, job, part, 6)
    assert request.status == RequestStatus.PENDING
    assert request.approval_level == 1
    assert service.jobs.get_job(job.id).status == JobStatus.OPEN

    approved = service.approve_request(request.id, "manager-1", comments="Needed today")

    assert approved.status == RequestStatus.APPROVED
    assert approved.approved_by == "manager-1"
    assert _level(service, part) == (10, 4, 6, 0)
    decisions = [h.decision for h in service.get_approval_history(request.id)]
    assert decisions == [ApprovalDecision.PENDING, ApprovalDecision.APPROVED]
    assert service.jobs.get_job(job.id).status == JobStatus.IN_PROGRESS


def test_approval_rechecks_stock(service, job, part, stocked):
    request = _request(service, job, part, 6)
    service.ledger.record_movement(part.id, "S1", MovementType.OUT, 5, reason="Counter sale")

    with pytest.raises(InsufficientStockError) as exc_info:
        service.approve_request(request.id, "manager-1")

    assert exc_info.value.available == 5
    assert service.get_request(request.id).status == RequestStatus.PENDING
    assert len(service.get_approval_history(request.id)) == 1


def test_only_pending_requests_can_be_approved(service, job, part, stocked):
    request = _request(service, job, part, 3)

    with pytest.raises(InvalidStateTransitionError):
        service.approve_request(request.id, "manager-1")


def test_only_approved_requests_can_be_issued(service, job, part, stocked):
    request = _request(service, job, part, 6)

    with pytest.raises(InvalidStateTransitionError):
        service.issue_request(request.id)

    assert _level(service, part) == (10, 10, 0, 0)


def test_issue_against_depleted_stock_fails(service, db_session, job, part, stocked):
    request = _request(service, job, part, 3)
    reservation = service.reservations.active_for_request(request.id)
    reservation.expires_at = datetime.utcnow() - timedelta(minutes=5)
    db_session.commit()
    service.reservations.expire_stale()
    service.ledger.record_movement(part.id, "S1", MovementType.OUT, 10, reason="Bulk sale")

    with pytest.raises(InsufficientStockError):
        service.issue_request(request.id)

    request = service.get_request(request.id)
    assert request.status == RequestStatus.APPROVED
    assert request.issued_quantity is None
    assert db_session.query(StockMovement).filter(
        StockMovement.reference_type == "SERVICE_REQUEST"
    ).count() == 0


def test_install_then_partial_return(service, db_session, job, part, stocked):
    request = _issued(service, job, part, 3)

    installed = service.install_part(
        PartInstallCreate(
            service_request_id=job.id,
            spare_part_id=part.id,
            technician_id="tech-1",
            quantity=2,
            serial_number="SN-001",
        )
    )

    assert (installed.unit_cost, installed.total_cost, installed.total_revenue) == (60.0, 120.0, 200.0)
    assert installed.warranty_expiry == installed.installed_at + relativedelta(months=6)
    assert installed.batch_number == request.batch_numbers[0]
    assert service.get_request(request.id).status == RequestStatus.INSTALLED
    assert service.costs.get_breakdown(job.id).parts_cost == 120.0

    results = service.return_parts(
        job.id,
        [PartReturnItem(spare_part_id=part.id, quantity=1, condition=ReturnCondition.GOOD, reason="Unused")],
        technician_id="tech-1",
    )

    assert results[0]["status"] == "Processed"
    assert _level(service, part) == (8, 8, 0, 0)
    request = service.get_request(request.id)
    assert request.status == RequestStatus.INSTALLED
    assert request.returned_quantity == 1
    returned = db_session.query(StockMovement).filter(StockMovement.movement_type == MovementType.RETURN).one()
    assert returned.quantity == 1
    assert returned.created_by == "tech-1"


def test_full_return_closes_the_request(service, job, part, stocked):
    request = _issued(service, job, part, 3)

    service.return_parts(
        job.id,
        [PartReturnItem(spare_part_id=part.id, quantity=3, condition=ReturnCondition.GOOD)],
    )

    assert service.get_request(request.id).status == RequestStatus.RETURNED
    assert _level(service, part) == (10, 10, 0, 0)


def test_damaged_return_goes_to_damaged_stock(service, job, part, stocked):
    request = _issued(service, job, part, 3)

    service.return_parts(
        job.id,
        [PartReturnItem(spare_part_id=part.id, quantity=1, condition=ReturnCondition.DAMAGED)],
    )

    assert _level(service, part) == (8, 7, 0, 1)
    assert service.get_request(request.id).status == RequestStatus.ISSUED


def test_return_reports_each_item(service, make_part, job, part, stocked):
    other = make_part()
    _issued(service, job, part, 3)

    results = service.return_parts(
        job.id,
        [
            PartReturnItem(spare_part_id=part.id, quantity=1, condition=ReturnCondition.GOOD),
            PartReturnItem(spare_part_id=other.id, quantity=1, condition=ReturnCondition.GOOD),
            PartReturnItem(spare_part_id=part.id, quantity=5, condition=ReturnCondition.GOOD),
        ],
    )

    assert [r["status"] for r in results] == ["Processed", "Failed", "Failed"]
    assert results[1]["error"] == "NotFoundError"
    assert results[2]["error"] == "ValidationError"
    assert _level(service, part) == (8, 8, 0, 0)


def test_install_requires_an_issued_request(service, job, part, stocked):
    _request(service, job, part, 3)

    with pytest.raises(NotFoundError):
        service.install_part(
            PartInstallCreate(service_request_id=job.id, spare_part_id=part.id, technician_id="tech-1", quantity=1)
        )


def test_install_cannot_exceed_issued_quantity(service, job, part, stocked):
    request = _issued(service, job, part, 3)

    with pytest.raises(ValidationError):
        service.install_part(
            PartInstallCreate(service_request_id=job.id, spare_part_id=part.id, technician_id="tech-1", quantity=4)
        )

    assert service.get_request(request.id).status == RequestStatus.ISSUED


def test_install_replacing_a_part_marks_it_removed(service, job, part, stocked):
    _issued(service, job, part, 1)
    old = service.install_part(
        PartInstallCreate(service_request_id=job.id, spare_part_id=part.id, technician_id="tech-1", quantity=1)
    )
    _issued(service, job, part, 1)

    new = service.install_part(
        PartInstallCreate(
            service_request_id=job.id,
            spare_part_id=part.id,
            technician_id="tech-2",
            quantity=1,
            replaced_part_id=old.id,
        )
    )

    assert new.replaced_part_id == old.id
    assert old.removal_date == new.installed_at
    assert old.removed_by == "tech-2"
    assert [p.id for p in service.list_installed_parts(job.id, include_removed=False)] == [new.id]


def test_cannot_replace_a_part_installed_on_another_job(service, make_job, job, part, stocked):
    _issued(service, job, part, 1)
    old = service.install_part(
        PartInstallCreate(service_request_id=job.id, spare_part_id=part.id, technician_id="tech-1", quantity=1)
    )
    other_job = make_job(store_id="S1")
    request = _issued(service, other_job, part, 1)

    with pytest.raises(ValidationError):
        service.install_part(
            PartInstallCreate(
                service_request_id=other_job.id,
                spare_part_id=part.id,
                technician_id="tech-2",
                quantity=1,
                replaced_part_id=old.id,
            )
        )

    assert service.get_request(request.id).status == RequestStatus.ISSUED
    assert [p.removal_date for p in service.list_installed_parts(job.id)] == [None]


def test_units_kept_after_a_partial_return_can_still_be_installed(service, job, part, stocked):
    request = _issued(service, job, part, 3)
    service.return_parts(
        job.id,
        [PartReturnItem(spare_part_id=part.id, quantity=1, condition=ReturnCondition.GOOD)],
    )
    assert service.get_request(request.id).status == RequestStatus.ISSUED

    with pytest.raises(ValidationError):
        service.install_part(
            PartInstallCreate(service_request_id=job.id, spare_part_id=part.id, technician_id="tech-1", quantity=3)
        )

    installed = service.install_part(
        PartInstallCreate(service_request_id=job.id, spare_part_id=part.id, technician_id="tech-1", quantity=2)
    )

    assert installed.quantity == 2
    request = service.get_request(request.id)
    assert request.status == RequestStatus.INSTALLED
    assert (request.installed_quantity, request.returned_quantity) == (2, 1)


def test_reject_pending_request(service, job, part, stocked):
    request = _request(service, job, part, 6)

    rejected = service.reject_request(request.id, "manager-1", "Use the refurbished unit")

    assert rejected.status == RequestStatus.REJECTED
    assert rejected.rejection_reason == "Use the refurbished unit"
    assert service.get_approval_history(request.id)[-1].decision == ApprovalDecision.REJECTED
    with pytest.raises(InvalidStateTransitionError):
        service.cancel_request(request.id, "tech-1")


def test_cancel_approved_request_releases_stock(service, job, part, stocked):
    request = _request(service, job, part, 3)

    cancelled = service.cancel_request(request.id, "tech-1", reason="Customer declined")

    assert cancelled.status == RequestStatus.CANCELLED
    assert cancelled.cancellation_reason == "Customer declined"
    assert _level(service, part) == (10, 10, 0, 0)
    assert service.reservations.active_for_request(request.id) is None


def test_hard_limit_without_approval_path_is_a_policy_violation(service, db_session, job, part, stocked):
    service.limits.create_limit(
        TechnicianLimitCreate(
            technician_id="tech-1",
            spare_part_id=part.id,
            max_quantity_per_request=2,
            requires_approval=False,
        )
    )

    with pytest.raises(PolicyViolationError):
        _request(service, job, part, 3)

    assert db_session.query(SparePartRequest).count() == 0


def test_part_limit_takes_precedence_over_category_limit(service, job, part, stocked):
    service.limits.create_limit(
        TechnicianLimitCreate(technician_id="tech-1", category_id=part.category_id, requires_approval=True)
    )
    service.limits.create_limit(
        TechnicianLimitCreate(
            technician_id="tech-1",
            spare_part_id=part.id,
            max_value_per_request=5000.0,
            requires_approval=False,
        )
    )

    assert _request(service, job, part, 8).status == RequestStatus.APPROVED
    assert _request(service, job, part, 1, technician="tech-2").status == RequestStatus.APPROVED


def test_category_limit_with_auto_approve_threshold(service, job, part, stocked):
    service.limits.create_limit(
        TechnicianLimitCreate(
            technician_id="tech-1",
            category_id=part.category_id,
            requires_approval=True,
            auto_approve_below=200.0,
        )
    )

    assert _request(service, job, part, 2).status == RequestStatus.APPROVED
    assert _request(service, job, part, 3).status == RequestStatus.PENDING


def test_new_limit_supersedes_the_old_one(service, part):
    first = service.limits.create_limit(
        TechnicianLimitCreate(technician_id="tech-1", spare_part_id=part.id, requires_approval=True)
    )
    second = service.limits.create_limit(
        TechnicianLimitCreate(technician_id="tech-1", spare_part_id=part.id, requires_approval=False)
    )

    assert service.limits.get_limit("tech-1", part.id).id == second.id
    assert [limit.id for limit in service.limits.list_limits("tech-1")] == [second.id]
    assert not first.is_active


@pytest.mark.parametrize(
    "estimated_cost, level",
    [(300.0, 1), (1000.0, 1), (1000.01, 2), (5000.0, 2), (5000.5, 3)],
)
def test_required_approval_level(service, estimated_cost, level):
    assert service.required_approval_level(estimated_cost) == level


def test_auto_issue_on_approval(db_session, test_settings, job, part, stocked):
    test_settings.AUTO_ISSUE_ON_APPROVAL = True
    service = OutwardFlowService(db_session, test_settings)

    request = _request(service, job, part, 3)

    assert service.get_request(request.id).status == RequestStatus.ISSUED
    assert _level(service, part) == (7, 7, 0, 0)


def test_list_requests_filters(service, make_job, job, part, stocked):
    other_job = make_job(store_id="S1")
    _request(service, job, part, 3)
    _request(service, other_job, part, 20, urgency=Urgency.URGENT)

    pending, total = service.list_requests(status=RequestStatus.PENDING)
    assert total == 1 and pending[0].service_request_id == other_job.id

    _, total = service.list_requests(service_request_id=job.id)
    assert total == 1
    _, total = service.list_requests(technician_id="tech-1", urgency=Urgency.URGENT)
    assert total == 1


def test_request_losing_the_last_unit_waits_for_parts(
    file_session_factory, test_settings, make_part, make_job, stock, monkeypatch
):
    setup = file_session_factory()
    part = make_part(db=setup)
    first_job, second_job = make_job(db=setup), make_job(db=setup)
    stock(part, quantity=1, db=setup)
    setup.close()

    first = OutwardFlowService(file_session_factory(), test_settings)
    second = OutwardFlowService(file_session_factory(), test_settings)
    # Both technicians see the last unit before either request is created
    seen = second.reservations.check_availability(part.id, "S1", 1)
    assert seen.available

    winner = _request(first, first_job, part, 1)
    monkeypatch.setattr(second.reservations, "check_availability", lambda *args: seen)
    loser = _request(second, second_job, part, 1, technician="tech-2")

    assert winner.status == RequestStatus.APPROVED
    assert loser.status == RequestStatus.PENDING
    assert second.reservations.active_for_request(loser.id) is None

    check = OutwardFlowService(file_session_factory(), test_settings)
    assert check.get_request(loser.id).status == RequestStatus.PENDING
    history = check.get_approval_history(loser.id)
    assert [(h.decision, h.comments, h.available_stock) for h in history] == [
        (ApprovalDecision.PENDING, "Awaiting stock", 0)
    ]
    assert check.jobs.get_job(second_job.id).status == JobStatus.WAITING_FOR_PARTS
    assert check.jobs.get_job(first_job.id).status == JobStatus.IN_PROGRESS
    level = check.ledger.get_level(part.id, "S1")
    assert (level.current_stock, level.available_stock, level.reserved_stock) == (1, 0, 1)

    for service in (first, second, check):
        service.db.close()
