import pytest

from apps.inventory.models import InventoryLevel, MovementType, StockBatch, StockMovement
from apps.inventory.services import StockLedger, get_stock_status
from apps.spare_parts.models import PartLifecycle
from core.exceptions import (
    DuplicateInventoryError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)


def _movements(db, level):
    return (
        db.query(StockMovement)
        .filter(StockMovement.inventory_level_id == level.id)
        .order_by(StockMovement.id)
        .all()
    )


def _assert_balanced(db, level):
    db.refresh(level)
    assert level.current_stock == level.available_stock + level.reserved_stock + level.damaged_stock
    assert level.current_stock >= 0
    remaining = sum(
        batch.remaining_quantity
        for batch in db.query(StockBatch).filter(StockBatch.inventory_level_id == level.id)
    )
    assert remaining == level.available_stock + level.reserved_stock


def test_initialize_stock_records_initialization_movement(db_session, make_part):
    part = make_part()
    ledger = StockLedger(db_session)

    level = ledger.initialize_stock(part.id, "S1", initial_stock=10, minimum_stock=5, maximum_stock=50, reorder_level=8)

    assert (level.current_stock, level.available_stock, level.reserved_stock, level.damaged_stock) == (10, 10, 0, 0)
    assert level.reorder_quantity == 45

    movements = _movements(db_session, level)
    assert len(movements) == 1
    assert movements[0].movement_type == MovementType.IN
    assert movements[0].reference_type == "INITIALIZATION"
    assert (movements[0].previous_stock, movements[0].new_stock, movements[0].quantity) == (0, 10, 10)

    batches = ledger.list_batches(part.id, "S1")
    assert len(batches) == 1
    assert batches[0].remaining_quantity == 10
    assert batches[0].unit_cost == part.cost_price


def test_initialize_without_stock_writes_no_movement(db_session, make_part):
    part = make_part()
    level = StockLedger(db_session).initialize_stock(part.id, "S1")

    assert level.current_stock == 0
    assert _movements(db_session, level) == []


def test_duplicate_initialization_is_rejected(db_session, make_part, stock):
    part = make_part()
    stock(part)

    with pytest.raises(DuplicateInventoryError):
        StockLedger(db_session).initialize_stock(part.id, "S1", initial_stock=5)

    assert db_session.query(InventoryLevel).count() == 1


def test_initialize_rejects_retired_part(db_session, make_part):
    part = make_part(lifecycle=PartLifecycle.DISCONTINUED)

    with pytest.raises(ValidationError):
        StockLedger(db_session).initialize_stock(part.id, "S1", initial_stock=5)


def test_out_beyond_available_fails_without_side_effects(db_session, make_part, stock):
    part = make_part()
    level = stock(part, quantity=10)
    ledger = StockLedger(db_session)
    ledger.reserve_units(level, 4)
    db_session.commit()

    with pytest.raises(InsufficientStockError) as exc_info:
        ledger.record_movement(part.id, "S1", MovementType.OUT, 7)

    assert exc_info.value.available == 6
    assert exc_info.value.to_dict()["available"] == 6
    level = ledger.get_level(part.id, "S1")
    assert (level.current_stock, level.available_stock, level.reserved_stock) == (10, 6, 4)
    assert len(_movements(db_session, level)) == 1


def test_unknown_level_is_not_found(db_session, make_part):
    part = make_part()

    with pytest.raises(NotFoundError):
        StockLedger(db_session).record_movement(part.id, "NOPE", MovementType.IN, 1)


def test_movement_quantity_must_be_positive(db_session, make_part, stock):
    part = make_part()
    stock(part)

    with pytest.raises(ValidationError):
        StockLedger(db_session).record_movement(part.id, "S1", MovementType.OUT, 0)


def test_counters_stay_balanced_across_movements(db_session, make_part, stock):
    part = make_part()
    level = stock(part, quantity=10)
    ledger = StockLedger(db_session)

    ledger.record_movement(part.id, "S1", MovementType.IN, 5, unit_cost=70.0)
    _assert_balanced(db_session, level)
    ledger.record_movement(part.id, "S1", MovementType.OUT, 8)
    _assert_balanced(db_session, level)
    ledger.reserve_units(level, 3)
    _assert_balanced(db_session, level)
    ledger.record_movement(part.id, "S1", MovementType.DAMAGED, 2, reason="Dropped")
    _assert_balanced(db_session, level)
    ledger.record_movement(part.id, "S1", MovementType.DAMAGED, 1, inbound=True)
    _assert_balanced(db_session, level)
    ledger.record_movement(part.id, "S1", MovementType.RETURN, 2)
    _assert_balanced(db_session, level)
    ledger.record_movement(part.id, "S1", MovementType.ADJUSTMENT, 12)
    _assert_balanced(db_session, level)
    ledger.release_units(level, 3)
    _assert_balanced(db_session, level)
    ledger.record_movement(part.id, "S1", MovementType.ADJUSTMENT, 4)
    _assert_balanced(db_session, level)

    assert (level.current_stock, level.available_stock, level.reserved_stock, level.damaged_stock) == (4, 3, 0, 1)


def test_every_movement_snapshots_previous_and_new_stock(db_session, make_part, stock):
    part = make_part()
    level = stock(part, quantity=10)
    ledger = StockLedger(db_session)

    ledger.record_movement(part.id, "S1", MovementType.OUT, 3)
    ledger.record_movement(part.id, "S1", MovementType.IN, 4)

    movements = _movements(db_session, level)
    assert [(m.previous_stock, m.quantity, m.new_stock) for m in movements] == [
        (0, 10, 10),
        (10, -3, 7),
        (7, 4, 11),
    ]


def test_adjustment_sets_absolute_target(db_session, make_part, stock):
    part = make_part()
    level = stock(part, quantity=10)
    ledger = StockLedger(db_session)

    movement = ledger.record_movement(part.id, "S1", MovementType.ADJUSTMENT, 6, reference_type="STOCK_COUNT")

    assert movement.quantity == -4
    assert (movement.previous_stock, movement.new_stock) == (10, 6)
    assert ledger.get_level(part.id, "S1").available_stock == 6

    with pytest.raises(ValidationError):
        ledger.record_movement(part.id, "S1", MovementType.ADJUSTMENT, 6)


def test_adjustment_cannot_cut_into_reserved_stock(db_session, make_part, stock):
    part = make_part()
    level = stock(part, quantity=10)
    ledger = StockLedger(db_session)
    ledger.reserve_units(level, 5)
    db_session.commit()

    with pytest.raises(InsufficientStockError):
        ledger.record_movement(part.id, "S1", MovementType.ADJUSTMENT, 3)

    level = ledger.get_level(part.id, "S1")
    assert (level.current_stock, level.reserved_stock) == (10, 5)


def test_inbound_damaged_goes_to_damaged_stock(db_session, make_part, stock):
    part = make_part()
    stock(part, quantity=10)
    ledger = StockLedger(db_session)

    ledger.record_movement(part.id, "S1", MovementType.DAMAGED, 2, inbound=True)

    level = ledger.get_level(part.id, "S1")
    assert (level.current_stock, level.available_stock, level.damaged_stock) == (12, 10, 2)


def test_outbound_movement_uses_fifo_batch_cost(db_session, make_part, stock):
    part = make_part()
    stock(part, quantity=2, unit_cost=50.0, batches=[(4, 80.0)])
    ledger = StockLedger(db_session)

    movement = ledger.record_movement(part.id, "S1", MovementType.OUT, 4)

    # 2 x 50 from the first lot, 2 x 80 from the second
    assert movement.unit_cost == 65.0
    assert movement.total_value == 260.0
    assert [b.remaining_quantity for b in ledger.list_batches(part.id, "S1")] == [0, 2]


def test_transfer_moves_stock_between_stores(db_session, make_part, stock):
    part = make_part()
    stock(part, store_id="S1", quantity=10, unit_cost=55.0)
    stock(part, store_id="S2", quantity=0)
    ledger = StockLedger(db_session)

    outgoing, incoming = ledger.transfer_stock(part.id, "S1", "S2", 4, actor="storekeeper")

    assert outgoing.movement_type == MovementType.TRANSFER
    assert outgoing.quantity == -4
    assert incoming.movement_type == MovementType.IN
    assert incoming.unit_cost == 55.0
    assert ledger.get_level(part.id, "S1").current_stock == 6
    assert ledger.get_level(part.id, "S2").available_stock == 4


def test_transfer_requires_destination_level(db_session, make_part, stock):
    part = make_part()
    stock(part, store_id="S1", quantity=10)
    ledger = StockLedger(db_session)

    with pytest.raises(NotFoundError):
        ledger.transfer_stock(part.id, "S1", "S9", 4)

    assert ledger.get_level(part.id, "S1").current_stock == 10


def test_stock_count_posts_one_adjustment_per_variance(db_session, make_part, stock):
    counted, matching, unstocked = make_part(), make_part(), make_part()
    stock(counted, quantity=10)
    stock(matching, quantity=7)
    ledger = StockLedger(db_session)

    result = ledger.perform_stock_count(
        "S1",
        [
            {"spare_part_id": counted.id, "physical_count": 8, "notes": "Shelf B2"},
            {"spare_part_id": matching.id, "physical_count": 7},
            {"spare_part_id": unstocked.id, "physical_count": 3},
        ],
        actor="auditor",
    )

    assert result == {"adjustments": 1, "total_variance": 2}
    level = ledger.get_level(counted.id, "S1")
    assert level.current_stock == 8
    last = _movements(db_session, level)[-1]
    assert last.movement_type == MovementType.ADJUSTMENT
    assert last.reference_type == "STOCK_COUNT"
    assert last.created_by == "auditor"


def test_low_stock_compares_current_stock_with_reorder_level(db_session, make_part, stock):
    healthy, low = make_part(), make_part()
    stock(healthy, quantity=10, reorder=8)
    stock(low, quantity=5, minimum=5, maximum=50, reorder=8)
    ledger = StockLedger(db_session)

    levels = ledger.list_low_stock("S1")

    assert [level.spare_part_id for level in levels] == [low.id]
    alert = ledger.low_stock_alert(levels[0])
    assert alert["shortfall_quantity"] == 3
    assert alert["suggested_order_quantity"] == 45
    assert alert["stock_status"] == "LOW_STOCK"
    assert alert["urgency_level"] == "MEDIUM"


def test_list_levels_filters_and_skips_deleted_parts(db_session, make_part, stock):
    first, second = make_part(), make_part()
    stock(first, quantity=10)
    stock(second, store_id="S2", quantity=0)
    ledger = StockLedger(db_session)

    levels, total = ledger.list_levels(store_id="S1")
    assert total == 1 and levels[0].spare_part_id == first.id

    levels, total = ledger.list_levels(out_of_stock=True)
    assert [level.spare_part_id for level in levels] == [second.id]

    second.lifecycle = PartLifecycle.DELETED
    db_session.commit()
    _, total = ledger.list_levels()
    assert total == 1


@pytest.mark.parametrize(
    "current, expected",
    [
        (0, "OUT_OF_STOCK"),
        (5, "CRITICAL_STOCK"),
        (10, "LOW_STOCK"),
        (30, "NORMAL_STOCK"),
        (50, "EXCESS_STOCK"),
    ],
)
def test_stock_status(current, expected):
    assert get_stock_status(current, minimum_stock=10, maximum_stock=50) == expected
