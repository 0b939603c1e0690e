import pytest
from pydantic import ValidationError as SchemaValidationError

from apps.outward_flow.models import RequestStatus
from apps.outward_flow.schemas import PartRequestCreate
from apps.outward_flow.services import OutwardFlowService
from apps.spare_parts.models import PartLifecycle
from apps.spare_parts.schemas import SparePartCreate, SparePartPricingUpdate
from apps.spare_parts.services import SparePartService
from core.exceptions import NotFoundError, ValidationError


def _new_part(**overrides):
    values = dict(
        name="Oil Filter",
        part_number=" of-100 ",
        category_id="FILTERS",
        cost_price=8.0,
        selling_price=12.5,
        warranty_months=3,
    )
    values.update(overrides)
    return SparePartCreate(**values)


def test_part_number_is_normalized(db_session):
    part = SparePartService(db_session).create_spare_part(_new_part())

    assert part.part_number == "OF-100"
    assert part.lifecycle == PartLifecycle.ACTIVE


def test_duplicate_part_number_is_rejected(db_session):
    service = SparePartService(db_session)
    service.create_spare_part(_new_part())

    with pytest.raises(ValidationError):
        service.create_spare_part(_new_part(name="Another filter", part_number="OF-100"))


def test_negative_prices_are_rejected():
    with pytest.raises(SchemaValidationError):
        _new_part(cost_price=-1.0)


def test_pricing_change_is_recorded_in_history(db_session, make_part):
    part = make_part(cost_price=60.0, selling_price=100.0, mrp=120.0)
    service = SparePartService(db_session)

    service.update_pricing(
        part.id,
        SparePartPricingUpdate(cost_price=65.0, selling_price=110.0, reason="Supplier increase"),
        changed_by="manager-1",
    )

    part = service.get_spare_part(part.id)
    assert (part.cost_price, part.selling_price, part.mrp) == (65.0, 110.0, 120.0)

    history = service.get_price_history(part.id)
    assert len(history) == 1
    entry = history[0]
    assert (entry.old_cost_price, entry.new_cost_price) == (60.0, 65.0)
    assert (entry.old_selling_price, entry.new_selling_price) == (100.0, 110.0)
    assert entry.changed_by == "manager-1"
    assert entry.reason == "Supplier increase"


def test_price_history_of_unknown_part(db_session):
    with pytest.raises(NotFoundError):
        SparePartService(db_session).get_price_history(404)


def test_stocked_part_is_discontinued_not_deleted(db_session, make_part, stock):
    stocked, unused = make_part(), make_part()
    stock(stocked, quantity=3)
    service = SparePartService(db_session)

    assert service.delete_spare_part(stocked.id) == PartLifecycle.DISCONTINUED
    assert service.delete_spare_part(unused.id) == PartLifecycle.DELETED

    with pytest.raises(ValidationError):
        service.get_active_spare_part(stocked.id)
    assert service.get_spare_part(stocked.id).lifecycle == PartLifecycle.DISCONTINUED


def test_requested_part_without_stock_is_discontinued(db_session, test_settings, make_part, make_job):
    part = make_part()
    job = make_job()
    request = OutwardFlowService(db_session, test_settings).create_request(
        PartRequestCreate(service_request_id=job.id, spare_part_id=part.id, technician_id="tech-1", requested_quantity=1)
    )
    assert request.status == RequestStatus.PENDING

    assert SparePartService(db_session).delete_spare_part(part.id) == PartLifecycle.DISCONTINUED


def test_repriced_part_is_discontinued(db_session, make_part):
    part = make_part()
    service = SparePartService(db_session)
    service.update_pricing(
        part.id,
        SparePartPricingUpdate(cost_price=61.0, selling_price=101.0, reason="Freight surcharge"),
        changed_by="manager-1",
    )

    assert service.delete_spare_part(part.id) == PartLifecycle.DISCONTINUED


def test_listing_hides_retired_parts(db_session, make_part):
    active = make_part(category_id="BRAKES")
    retired = make_part(category_id="FILTERS", lifecycle=PartLifecycle.DISCONTINUED)
    service = SparePartService(db_session)

    parts, total = service.get_spare_parts()
    assert total == 1 and parts[0].id == active.id

    _, total = service.get_spare_parts(lifecycle=None)
    assert total == 2
    assert service.get_categories() == ["BRAKES"]
    assert retired.lifecycle == PartLifecycle.DISCONTINUED
