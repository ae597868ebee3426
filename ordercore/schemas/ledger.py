from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from ordercore.schemas.base import BaseResponseSchema, PaginatedResponse


class LedgerEntryResponse(BaseResponseSchema):
    id: uuid.UUID
    subject_type: str
    subject_id: uuid.UUID
    sequence_no: int
    action_type: str
    delta: Decimal
    previous_balance: Decimal
    new_balance: Decimal
    actor_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[uuid.UUID] = None
    created_at: datetime


class LedgerListResponse(PaginatedResponse):
    items: List[LedgerEntryResponse]


class LedgerReplayResponse(BaseModel):
    subject_type: str
    subject_id: uuid.UUID
    stored_balance: Decimal
    replayed_balance: Decimal
    entry_count: int
    broken_entries: List[int]
    is_consistent: bool
