import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_ordercore.db")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("DB_RETRY_BACKOFF_SECONDS", "0")
os.environ.setdefault("SELLER_STATE", "Maharashtra")

import uuid  # noqa: E402
from datetime import date  # noqa: E402
from decimal import Decimal  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402

from ordercore.database import async_session_factory, drop_db, init_db  # noqa: E402
from ordercore.main import app  # noqa: E402
from ordercore.models import OrderStatus, PaymentMethod  # noqa: E402
from ordercore.schemas.order import AddressSnapshot, OrderCreate, OrderItemCreate  # noqa: E402
from ordercore.schemas.product import ProductCreate  # noqa: E402
from ordercore.services.order_service import OrderService  # noqa: E402
from ordercore.services.order_state_machine import ShippingDetails  # noqa: E402
from ordercore.services.product_service import ProductService  # noqa: E402


ACTOR_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


@pytest.fixture(autouse=True)
async def _reset_db():
    await drop_db()
    await init_db()
    yield


@pytest.fixture()
async def db():
    async with async_session_factory() as session:
        yield session


@pytest.fixture()
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def actor_headers(role: str = "super_admin", actor_id: uuid.UUID = ACTOR_ID) -> dict:
    return {"X-Actor-Id": str(actor_id), "X-Actor-Role": role}


@pytest.fixture()
def admin_headers() -> dict:
    return actor_headers("super_admin")


@pytest.fixture()
async def product(db):
    """Soap bar: price 1000, cost 600, 18% GST, 10 in stock."""
    return await ProductService(db).create_product(
        ProductCreate(
            name="Lavender Soap",
            sku="SOAP-LAV",
            price=Decimal("1000.00"),
            cost_price=Decimal("600.00"),
            gst_rate=Decimal("18"),
            initial_stock=10,
        ),
        actor_id=ACTOR_ID,
    )


def address(state: str = "Maharashtra") -> AddressSnapshot:
    return AddressSnapshot(
        name="Asha Rao",
        line1="12 MG Road",
        city="Pune" if state == "Maharashtra" else "Bengaluru",
        state=state,
        pincode="411001",
    )


@pytest.fixture()
def make_order(db, product):
    """Place an order for ``quantity`` of the product; returns (order, proforma)."""

    async def _make(
        state: str = "Maharashtra",
        payment_method: PaymentMethod = PaymentMethod.ONLINE,
        quantity: int = 1,
        payment_id=None,
        shipping_amount: Decimal = Decimal("0.00"),
    ):
        data = OrderCreate(
            customer_name="Asha Rao",
            customer_email="asha@example.com",
            shipping_address=address(state),
            items=[OrderItemCreate(product_id=product.id, quantity=quantity)],
            shipping_amount=shipping_amount,
            payment_method=payment_method,
            payment_id=payment_id,
        )
        return await OrderService(db).create_order(data, created_by=ACTOR_ID)

    return _make


@pytest.fixture()
def headers_for():
    return actor_headers


@pytest.fixture()
def actor_id() -> uuid.UUID:
    return ACTOR_ID


SHIPPING = ShippingDetails(
    courier_name="BlueDart",
    tracking_id="BD123456",
    expected_delivery_date=date(2026, 10, 20),
)

FULFILLMENT_PATH = [
    OrderStatus.CONFIRMED.value,
    OrderStatus.PACKING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
]


@pytest.fixture()
def advance(db):
    """Walk an order forward along the happy path up to ``target``."""

    async def _advance(order_id, target: str = OrderStatus.DELIVERED.value):
        service = OrderService(db)
        result = None
        for status in FULFILLMENT_PATH[:FULFILLMENT_PATH.index(target) + 1]:
            shipping = SHIPPING if status == OrderStatus.SHIPPED.value else None
            result = await service.transition(order_id, status, actor_id=ACTOR_ID, shipping=shipping)
        return result

    return _advance
