import uuid

from fastapi import APIRouter, status, Depends

from ordercore.api.deps import DB, CurrentActor, require_permissions
from ordercore.core.exceptions import NotFoundError
from ordercore.schemas.product import ProductCreate, ProductResponse, CostPriceUpdate
from ordercore.services.product_service import ProductService


router = APIRouter(tags=["Products"])


@router.post(
    "",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions("products:manage"))]
)
async def create_product(
    data: ProductCreate,
    db: DB,
    actor: CurrentActor,
):
    """Create a product. Opening stock is booked through the ledger."""
    product = await ProductService(db).create_product(data, actor_id=actor.id)
    return ProductResponse.model_validate(product)


@router.get(
    "/{product_id}",
    response_model=ProductResponse,
    dependencies=[Depends(require_permissions("orders:view"))]
)
async def get_product(
    product_id: uuid.UUID,
    db: DB,
):
    product = await ProductService(db).get_product(product_id)
    if product is None:
        raise NotFoundError("Product not found", {"product_id": str(product_id)})
    return ProductResponse.model_validate(product)


@router.patch(
    "/{product_id}/cost-price",
    response_model=ProductResponse,
    dependencies=[Depends(require_permissions("products:manage"))]
)
async def update_cost_price(
    product_id: uuid.UUID,
    data: CostPriceUpdate,
    db: DB,
):
    """
    Correct a product's cost price.
    Profit reports use the live cost price, so past periods change too.
    """
    product = await ProductService(db).update_cost_price(product_id, data.cost_price)
    return ProductResponse.model_validate(product)
