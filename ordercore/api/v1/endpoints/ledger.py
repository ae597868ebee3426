from typing import Optional
import uuid
from math import ceil

from fastapi import APIRouter, Query, Depends

from ordercore.api.deps import DB, require_permissions
from ordercore.models.ledger import LedgerAction, LedgerSubjectType
from ordercore.schemas.ledger import LedgerEntryResponse, LedgerListResponse, LedgerReplayResponse
from ordercore.services.ledger_service import LedgerService


router = APIRouter(tags=["Ledger"])


@router.get(
    "",
    response_model=LedgerListResponse,
    dependencies=[Depends(require_permissions("ledger:view"))]
)
async def list_ledger_entries(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    subject_type: Optional[LedgerSubjectType] = Query(None),
    subject_id: Optional[uuid.UUID] = Query(None),
    action_type: Optional[LedgerAction] = Query(None),
):
    entries, total = await LedgerService(db).list_entries(
        subject_type=subject_type.value if subject_type else None,
        subject_id=subject_id,
        action=action_type.value if action_type else None,
        skip=(page - 1) * size,
        limit=size,
    )
    return LedgerListResponse(
        items=[LedgerEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get(
    "/{subject_type}/{subject_id}/verify",
    response_model=LedgerReplayResponse,
    dependencies=[Depends(require_permissions("ledger:view"))]
)
async def verify_ledger(
    subject_type: LedgerSubjectType,
    subject_id: uuid.UUID,
    db: DB,
):
    """Replay a subject's ledger from zero and compare with the stored balance."""
    replay = await LedgerService(db).replay(subject_type, subject_id)
    return LedgerReplayResponse(
        subject_type=replay.subject_type,
        subject_id=replay.subject_id,
        stored_balance=replay.stored_balance,
        replayed_balance=replay.replayed_balance,
        entry_count=replay.entry_count,
        broken_entries=replay.broken_entries,
        is_consistent=replay.is_consistent,
    )
