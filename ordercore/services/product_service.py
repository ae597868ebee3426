from typing import List, Optional
from decimal import Decimal
import uuid
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from ordercore.core.exceptions import NotFoundError, ValidationError
from ordercore.core.retry import retry_on_contention
from ordercore.models.ledger import LedgerAction, LedgerEntry, LedgerSubjectType
from ordercore.models.product import Product, RawMaterial
from ordercore.schemas.product import ProductCreate, RawMaterialCreate, RawMaterialMovement
from ordercore.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


class ProductService:
    """Catalog support needed by orders and profit reporting."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)

    async def get_product(self, product_id: uuid.UUID) -> Optional[Product]:
        result = await self.db.execute(select(Product).where(Product.id == product_id))
        return result.scalar_one_or_none()

    @retry_on_contention
    async def create_product(
        self,
        data: ProductCreate,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Product:
        """Create a product; opening stock is booked as a ledger 'add'."""
        product = Product(
            name=data.name,
            sku=data.sku,
            description=data.description,
            hsn_code=data.hsn_code,
            price=data.price,
            cost_price=data.cost_price,
            gst_rate=data.gst_rate,
            stock_quantity=0,
            is_active=True,
        )
        self.db.add(product)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationError(f"Product with SKU '{data.sku}' already exists", {"sku": data.sku})

        if data.initial_stock:
            await self.ledger.record(
                LedgerSubjectType.PRODUCT_STOCK,
                product.id,
                LedgerAction.ADD,
                data.initial_stock,
                actor_id=actor_id,
                notes="Opening stock",
            )

        await self.db.commit()
        logger.info(f"Created product {product.sku} with stock {product.stock_quantity}")
        return product

    @retry_on_contention
    async def update_cost_price(
        self,
        product_id: uuid.UUID,
        cost_price: Decimal,
    ) -> Product:
        """Profit reports read cost price live, so corrections apply retroactively."""
        product = await self.get_product(product_id)
        if product is None:
            raise NotFoundError("Product not found", {"product_id": str(product_id)})

        old_cost = product.cost_price
        product.cost_price = cost_price
        await self.db.commit()
        logger.info(f"Product {product.sku} cost price {old_cost} -> {cost_price}")
        return product


class RawMaterialService:
    """Raw materials whose quantities move only through the ledger."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)

    async def get_material(self, material_id: uuid.UUID) -> Optional[RawMaterial]:
        result = await self.db.execute(select(RawMaterial).where(RawMaterial.id == material_id))
        return result.scalar_one_or_none()

    @retry_on_contention
    async def create_material(
        self,
        data: RawMaterialCreate,
        actor_id: Optional[uuid.UUID] = None,
    ) -> RawMaterial:
        material = RawMaterial(
            name=data.name,
            unit=data.unit,
            quantity=Decimal("0"),
            min_quantity=data.min_quantity,
            cost_per_unit=data.cost_per_unit,
        )
        self.db.add(material)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationError(f"Raw material '{data.name}' already exists", {"name": data.name})

        if data.initial_quantity:
            await self.ledger.record(
                LedgerSubjectType.RAW_MATERIAL,
                material.id,
                LedgerAction.ADD,
                data.initial_quantity,
                actor_id=actor_id,
                notes="Opening quantity",
            )

        await self.db.commit()
        return material

    @retry_on_contention
    async def record_movement(
        self,
        material_id: uuid.UUID,
        data: RawMaterialMovement,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LedgerEntry:
        entry = await self.ledger.record(
            LedgerSubjectType.RAW_MATERIAL,
            material_id,
            data.action_type,
            data.quantity,
            actor_id=actor_id,
            notes=data.notes,
        )
        await self.db.commit()
        return entry

    async def get_low_stock(self) -> List[RawMaterial]:
        result = await self.db.execute(
            select(RawMaterial)
            .where(RawMaterial.quantity <= RawMaterial.min_quantity)
            .order_by(RawMaterial.name)
        )
        return list(result.scalars().all())
