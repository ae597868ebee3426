"""
Ledger Recorder.

Every change to a tracked balance (product stock, raw material quantity)
goes through ``LedgerService.record``:

1. lock the subject row
2. append the ledger entry and flush it
3. write the new balance

The entry is written before the balance so that a crash between the two
leaves an orphaned entry, never an unaudited balance change. ``replay``
rebuilds a balance from the entries alone.
"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ordercore.core.exceptions import InsufficientBalanceError, NotFoundError, ValidationError
from ordercore.models.ledger import LedgerAction, LedgerEntry, LedgerSubjectType
from ordercore.models.product import Product, RawMaterial

logger = logging.getLogger(__name__)


SUBJECT_MODELS = {
    LedgerSubjectType.PRODUCT_STOCK.value: (Product, "stock_quantity"),
    LedgerSubjectType.RAW_MATERIAL.value: (RawMaterial, "quantity"),
}


@dataclass
class LedgerReplay:
    subject_type: str
    subject_id: uuid.UUID
    stored_balance: Decimal
    replayed_balance: Decimal
    entry_count: int
    broken_entries: List[int] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return self.stored_balance == self.replayed_balance and not self.broken_entries


def _subject_type_value(subject_type: Union[LedgerSubjectType, str]) -> str:
    value = getattr(subject_type, "value", subject_type)
    if value not in SUBJECT_MODELS:
        raise ValidationError(f"Unknown ledger subject type '{value}'", {"subject_type": value})
    return value


def compute_delta(action: str, quantity: Decimal, previous_balance: Decimal) -> Decimal:
    """
    Signed change for an action.

    add/use take a positive quantity; adjust takes a signed, non-zero
    correction; update takes the new absolute balance.
    """
    if action == LedgerAction.ADD.value:
        if quantity <= 0:
            raise ValidationError("Quantity to add must be positive", {"quantity": str(quantity)})
        return quantity
    if action == LedgerAction.USE.value:
        if quantity <= 0:
            raise ValidationError("Quantity used must be positive", {"quantity": str(quantity)})
        return -quantity
    if action == LedgerAction.ADJUST.value:
        if quantity == 0:
            raise ValidationError("Adjustment cannot be zero")
        return quantity
    if action == LedgerAction.UPDATE.value:
        if quantity < 0:
            raise ValidationError("Balance cannot be set below zero", {"quantity": str(quantity)})
        return quantity - previous_balance
    raise ValidationError(f"Unknown ledger action '{action}'", {"action": action})


class LedgerService:
    """Append-only audited balance changes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _lock_subject(self, subject_type: str, subject_id: uuid.UUID):
        model, _ = SUBJECT_MODELS[subject_type]
        result = await self.db.execute(
            select(model)
            .where(model.id == subject_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        subject = result.scalar_one_or_none()
        if subject is None:
            raise NotFoundError(
                f"{model.__name__} {subject_id} not found",
                {"subject_type": subject_type, "subject_id": str(subject_id)},
            )
        return subject

    async def _next_sequence_no(self, subject_type: str, subject_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.max(LedgerEntry.sequence_no)).where(
                LedgerEntry.subject_type == subject_type,
                LedgerEntry.subject_id == subject_id,
            )
        )
        return (result.scalar() or 0) + 1

    async def record(
        self,
        subject_type: Union[LedgerSubjectType, str],
        subject_id: uuid.UUID,
        action: Union[LedgerAction, str],
        quantity: Union[Decimal, int, str],
        actor_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[uuid.UUID] = None,
    ) -> LedgerEntry:
        """
        Append an entry and move the subject's balance.

        Runs inside the caller's transaction and does not commit.
        """
        subject_type = _subject_type_value(subject_type)
        action = getattr(action, "value", action)
        quantity = Decimal(str(quantity))

        subject = await self._lock_subject(subject_type, subject_id)
        _, balance_attr = SUBJECT_MODELS[subject_type]

        previous_balance = Decimal(str(getattr(subject, balance_attr)))
        delta = compute_delta(action, quantity, previous_balance)
        new_balance = previous_balance + delta

        if new_balance < 0:
            raise InsufficientBalanceError(
                f"Insufficient balance: have {previous_balance}, change {delta}",
                {
                    "subject_type": subject_type,
                    "subject_id": str(subject_id),
                    "previous_balance": str(previous_balance),
                    "delta": str(delta),
                },
            )
        if subject_type == LedgerSubjectType.PRODUCT_STOCK.value and delta != delta.to_integral_value():
            raise ValidationError("Product stock moves in whole units", {"quantity": str(quantity)})

        entry = LedgerEntry(
            subject_type=subject_type,
            subject_id=subject_id,
            sequence_no=await self._next_sequence_no(subject_type, subject_id),
            action_type=action,
            delta=delta,
            previous_balance=previous_balance,
            new_balance=new_balance,
            actor_id=actor_id,
            notes=notes,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        self.db.add(entry)
        await self.db.flush()

        if subject_type == LedgerSubjectType.PRODUCT_STOCK.value:
            setattr(subject, balance_attr, int(new_balance))
        else:
            setattr(subject, balance_attr, new_balance)
        await self.db.flush()

        logger.info(
            f"Ledger {subject_type}:{subject_id} #{entry.sequence_no} {action} "
            f"{previous_balance} -> {new_balance}"
        )
        return entry

    async def get_entries(
        self,
        subject_type: Union[LedgerSubjectType, str],
        subject_id: uuid.UUID,
    ) -> List[LedgerEntry]:
        subject_type = _subject_type_value(subject_type)
        result = await self.db.execute(
            select(LedgerEntry)
            .where(
                LedgerEntry.subject_type == subject_type,
                LedgerEntry.subject_id == subject_id,
            )
            .order_by(LedgerEntry.sequence_no)
        )
        return list(result.scalars().all())

    async def list_entries(
        self,
        subject_type: Optional[str] = None,
        subject_id: Optional[uuid.UUID] = None,
        action: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[LedgerEntry], int]:
        """Newest first, with total count for pagination."""
        conditions = []
        if subject_type:
            conditions.append(LedgerEntry.subject_type == _subject_type_value(subject_type))
        if subject_id:
            conditions.append(LedgerEntry.subject_id == subject_id)
        if action:
            conditions.append(LedgerEntry.action_type == action)

        count_stmt = select(func.count(LedgerEntry.id)).where(*conditions)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(LedgerEntry)
            .where(*conditions)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.sequence_no.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def replay(
        self,
        subject_type: Union[LedgerSubjectType, str],
        subject_id: uuid.UUID,
    ) -> LedgerReplay:
        """
        Rebuild the balance from zero and check every entry's chain.

        An entry is broken when previous + delta != new, or when its
        previous balance is not the running balance of the entries before it.
        """
        subject_type = _subject_type_value(subject_type)
        model, balance_attr = SUBJECT_MODELS[subject_type]

        result = await self.db.execute(select(model).where(model.id == subject_id))
        subject = result.scalar_one_or_none()
        if subject is None:
            raise NotFoundError(
                f"{model.__name__} {subject_id} not found",
                {"subject_type": subject_type, "subject_id": str(subject_id)},
            )

        entries = await self.get_entries(subject_type, subject_id)
        running = Decimal("0")
        broken = []
        for entry in entries:
            if entry.previous_balance != running or entry.previous_balance + entry.delta != entry.new_balance:
                broken.append(entry.sequence_no)
            running += entry.delta

        replay = LedgerReplay(
            subject_type=subject_type,
            subject_id=subject_id,
            stored_balance=Decimal(str(getattr(subject, balance_attr))),
            replayed_balance=running,
            entry_count=len(entries),
            broken_entries=broken,
        )
        if not replay.is_consistent:
            logger.error(
                f"Ledger mismatch for {subject_type}:{subject_id}: stored "
                f"{replay.stored_balance}, replayed {replay.replayed_balance}, "
                f"broken entries {broken}"
            )
        return replay
