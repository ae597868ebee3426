from fastapi import APIRouter

from ordercore.api.v1.endpoints import (
    accounting,
    cod,
    invoices,
    ledger,
    orders,
    payments,
    products,
    raw_materials,
)


api_router = APIRouter(prefix="/api/v1")

# Orders and fulfillment
api_router.include_router(
    orders.router,
    prefix="/orders",
)
api_router.include_router(
    cod.router,
    prefix="/orders",
)
api_router.include_router(
    payments.router,
    prefix="/payments",
)

# Billing
api_router.include_router(
    invoices.router,
    prefix="/invoices",
)
api_router.include_router(
    accounting.router,
    prefix="/accounting",
)

# Catalog and stock
api_router.include_router(
    products.router,
    prefix="/products",
)
api_router.include_router(
    raw_materials.router,
    prefix="/raw-materials",
)
api_router.include_router(
    ledger.router,
    prefix="/ledger",
)
