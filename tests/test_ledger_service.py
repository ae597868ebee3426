import uuid
from decimal import Decimal

import pytest

from ordercore.core.exceptions import InsufficientBalanceError, NotFoundError, ValidationError
from ordercore.database import async_session_factory
from ordercore.models import LedgerAction, LedgerEntry, LedgerSubjectType
from ordercore.schemas.product import RawMaterialCreate, RawMaterialMovement
from ordercore.services.ledger_service import LedgerService, compute_delta
from ordercore.services.product_service import RawMaterialService

from tests.conftest import ACTOR_ID


@pytest.fixture()
async def glycerin(db):
    return await RawMaterialService(db).create_material(
        RawMaterialCreate(
            name="Glycerin",
            unit="kg",
            initial_quantity=Decimal("50"),
            min_quantity=Decimal("10"),
            cost_per_unit=Decimal("120.00"),
        ),
        actor_id=ACTOR_ID,
    )


async def move(db, material, action, quantity):
    return await RawMaterialService(db).record_movement(
        material.id,
        RawMaterialMovement(action_type=action, quantity=Decimal(quantity)),
        actor_id=ACTOR_ID,
    )


async def test_movements_chain_balances(db, glycerin):
    used = await move(db, glycerin, LedgerAction.USE, "20")
    adjusted = await move(db, glycerin, LedgerAction.ADJUST, "-5")
    updated = await move(db, glycerin, LedgerAction.UPDATE, "100")

    assert (used.previous_balance, used.delta, used.new_balance) == (Decimal("50"), Decimal("-20"), Decimal("30"))
    assert adjusted.new_balance == Decimal("25")
    assert updated.delta == Decimal("75")
    assert updated.new_balance == Decimal("100")
    assert [used.sequence_no, adjusted.sequence_no, updated.sequence_no] == [2, 3, 4]

    await db.refresh(glycerin)
    assert glycerin.quantity == Decimal("100")


async def test_actor_id_reads_back_from_storage(db, glycerin):
    used = await move(db, glycerin, LedgerAction.USE, "1")

    async with async_session_factory() as fresh:
        stored = await fresh.get(LedgerEntry, used.id)

    assert stored.actor_id == ACTOR_ID
    assert stored.subject_id == glycerin.id


async def test_replay_matches_stored_balance(db, glycerin):
    await move(db, glycerin, LedgerAction.USE, "12.5")
    await move(db, glycerin, LedgerAction.ADD, "7.25")

    replay = await LedgerService(db).replay(LedgerSubjectType.RAW_MATERIAL, glycerin.id)

    assert replay.is_consistent
    assert replay.entry_count == 3
    assert replay.replayed_balance == Decimal("44.75")
    assert replay.stored_balance == Decimal("44.75")


async def test_replay_detects_tampered_balance(db, glycerin):
    glycerin.quantity = Decimal("999")
    await db.commit()

    replay = await LedgerService(db).replay(LedgerSubjectType.RAW_MATERIAL, glycerin.id)

    assert not replay.is_consistent
    assert replay.broken_entries == []
    assert replay.replayed_balance == Decimal("50")


async def test_balance_cannot_go_negative(db, glycerin):
    with pytest.raises(InsufficientBalanceError) as exc_info:
        await move(db, glycerin, LedgerAction.USE, "51")

    assert Decimal(exc_info.value.details["previous_balance"]) == Decimal("50")
    entries = await LedgerService(db).get_entries(LedgerSubjectType.RAW_MATERIAL, glycerin.id)
    assert len(entries) == 1


async def test_product_stock_moves_in_whole_units(db, product):
    ledger = LedgerService(db)
    product_id = product.id

    with pytest.raises(ValidationError):
        await ledger.record(LedgerSubjectType.PRODUCT_STOCK, product_id, LedgerAction.USE, "0.5")
    await db.rollback()

    entry = await ledger.record(LedgerSubjectType.PRODUCT_STOCK, product_id, LedgerAction.USE, 3)
    await db.commit()

    assert entry.new_balance == Decimal("7")
    await db.refresh(product)
    assert product.stock_quantity == 7


async def test_low_stock(db, glycerin):
    assert await RawMaterialService(db).get_low_stock() == []

    await move(db, glycerin, LedgerAction.USE, "45")

    low = await RawMaterialService(db).get_low_stock()
    assert [m.id for m in low] == [glycerin.id]
    assert low[0].is_low_stock


async def test_list_entries_filters(db, glycerin, product):
    entries, total = await LedgerService(db).list_entries(subject_type=LedgerSubjectType.RAW_MATERIAL.value)
    assert total == 1
    assert entries[0].subject_id == glycerin.id

    _, total = await LedgerService(db).list_entries()
    assert total == 2


async def test_unknown_subject(db):
    with pytest.raises(NotFoundError):
        await LedgerService(db).record(LedgerSubjectType.RAW_MATERIAL, uuid.uuid4(), LedgerAction.ADD, 1)
    with pytest.raises(ValidationError):
        await LedgerService(db).get_entries("warehouse", uuid.uuid4())


@pytest.mark.parametrize("action, quantity, previous, expected", [
    ("add", Decimal("5"), Decimal("10"), Decimal("5")),
    ("use", Decimal("5"), Decimal("10"), Decimal("-5")),
    ("adjust", Decimal("-3"), Decimal("10"), Decimal("-3")),
    ("update", Decimal("4"), Decimal("10"), Decimal("-6")),
])
def test_compute_delta(action, quantity, previous, expected):
    assert compute_delta(action, quantity, previous) == expected


@pytest.mark.parametrize("action, quantity", [
    ("add", Decimal("0")),
    ("use", Decimal("-1")),
    ("adjust", Decimal("0")),
    ("update", Decimal("-1")),
    ("transfer", Decimal("1")),
])
def test_compute_delta_rejects(action, quantity):
    with pytest.raises(ValidationError):
        compute_delta(action, quantity, Decimal("10"))
