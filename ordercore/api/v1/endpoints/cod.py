from typing import List
import uuid

from fastapi import APIRouter, Depends

from ordercore.api.deps import DB, CurrentActor, require_permissions
from ordercore.schemas.order import (
    OrderResponse,
    CodCollect,
    CodAction,
    CodOverride,
    CodHistoryEntry,
)
from ordercore.services.cod_settlement_service import CodSettlementService


router = APIRouter(tags=["COD Settlement"])


@router.post(
    "/{order_id}/cod/collect",
    response_model=OrderResponse,
    dependencies=[Depends(require_permissions("cod:confirm"))]
)
async def confirm_collection(
    order_id: uuid.UUID,
    data: CodCollect,
    db: DB,
    actor: CurrentActor,
):
    """pending -> collected_by_courier"""
    order = await CodSettlementService(db).confirm_collection(
        order_id, data.courier_name, actor_id=actor.id, notes=data.notes
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/cod/awaiting-settlement",
    response_model=OrderResponse,
    dependencies=[Depends(require_permissions("cod:confirm"))]
)
async def confirm_awaiting_settlement(
    order_id: uuid.UUID,
    data: CodAction,
    db: DB,
    actor: CurrentActor,
):
    """collected_by_courier -> awaiting_settlement"""
    order = await CodSettlementService(db).confirm_awaiting_settlement(
        order_id, actor_id=actor.id, notes=data.notes
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/cod/settle",
    response_model=OrderResponse,
    dependencies=[Depends(require_permissions("cod:confirm"))]
)
async def confirm_settled(
    order_id: uuid.UUID,
    data: CodAction,
    db: DB,
    actor: CurrentActor,
):
    """Cash confirmed in the bank. From here the order counts as revenue."""
    order = await CodSettlementService(db).confirm_settled(
        order_id, actor_id=actor.id, notes=data.notes
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/cod/issue",
    response_model=OrderResponse,
    dependencies=[Depends(require_permissions("cod:confirm"))]
)
async def report_issue(
    order_id: uuid.UUID,
    data: CodAction,
    db: DB,
    actor: CurrentActor,
):
    """Flag COD cash as not received."""
    order = await CodSettlementService(db).report_issue(
        order_id, actor_id=actor.id, notes=data.notes
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/cod/override",
    response_model=OrderResponse,
    dependencies=[Depends(require_permissions("cod:override"))]
)
async def override_cod_status(
    order_id: uuid.UUID,
    data: CodOverride,
    db: DB,
    actor: CurrentActor,
):
    """
    Set the COD state directly after manual reconciliation.
    Requires: cod:override permission
    """
    order = await CodSettlementService(db).override_status(
        order_id, data.status.value, data.reason, actor_id=actor.id
    )
    return OrderResponse.model_validate(order)


@router.get(
    "/{order_id}/cod/history",
    response_model=List[CodHistoryEntry],
    dependencies=[Depends(require_permissions("orders:view"))]
)
async def get_cod_history(
    order_id: uuid.UUID,
    db: DB,
):
    """COD custody trail, oldest first."""
    entries = await CodSettlementService(db).get_history(order_id)
    return [CodHistoryEntry.model_validate(e) for e in entries]
