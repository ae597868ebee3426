from typing import List
import uuid

from fastapi import APIRouter, status, Depends

from ordercore.api.deps import DB, CurrentActor, require_permissions
from ordercore.core.exceptions import NotFoundError
from ordercore.schemas.ledger import LedgerEntryResponse
from ordercore.schemas.product import RawMaterialCreate, RawMaterialMovement, RawMaterialResponse
from ordercore.services.product_service import RawMaterialService


router = APIRouter(tags=["Raw Materials"])


@router.post(
    "",
    response_model=RawMaterialResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions("ledger:adjust"))]
)
async def create_raw_material(
    data: RawMaterialCreate,
    db: DB,
    actor: CurrentActor,
):
    material = await RawMaterialService(db).create_material(data, actor_id=actor.id)
    return RawMaterialResponse.model_validate(material)


@router.get(
    "/low-stock",
    response_model=List[RawMaterialResponse],
    dependencies=[Depends(require_permissions("ledger:view"))]
)
async def list_low_stock(db: DB):
    """Raw materials at or below their minimum quantity."""
    materials = await RawMaterialService(db).get_low_stock()
    return [RawMaterialResponse.model_validate(m) for m in materials]


@router.post(
    "/{material_id}/movements",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions("ledger:adjust"))]
)
async def record_movement(
    material_id: uuid.UUID,
    data: RawMaterialMovement,
    db: DB,
    actor: CurrentActor,
):
    """
    Move a raw material balance: add, use, adjust (signed) or update
    (absolute). Every movement appends a ledger entry.
    """
    entry = await RawMaterialService(db).record_movement(material_id, data, actor_id=actor.id)
    return LedgerEntryResponse.model_validate(entry)


@router.get(
    "/{material_id}",
    response_model=RawMaterialResponse,
    dependencies=[Depends(require_permissions("ledger:view"))]
)
async def get_raw_material(
    material_id: uuid.UUID,
    db: DB,
):
    material = await RawMaterialService(db).get_material(material_id)
    if material is None:
        raise NotFoundError("Raw material not found", {"material_id": str(material_id)})
    return RawMaterialResponse.model_validate(material)
