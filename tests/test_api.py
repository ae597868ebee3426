from datetime import datetime, timezone
from decimal import Decimal

import pytest


API = "/api/v1"


@pytest.fixture()
async def api_product(client, admin_headers):
    response = await client.post(
        f"{API}/products",
        json={
            "name": "Neem Soap",
            "sku": "SOAP-NEEM",
            "price": "250.00",
            "cost_price": "100.00",
            "gst_rate": "18",
            "initial_stock": 20,
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    return response.json()


def order_payload(product_id, state="Maharashtra", payment_method="online", quantity=4):
    return {
        "customer_name": "Meera Iyer",
        "customer_email": "meera@example.com",
        "shipping_address": {
            "name": "Meera Iyer",
            "line1": "4 Lake View",
            "city": "Chennai" if state != "Maharashtra" else "Mumbai",
            "state": state,
            "pincode": "600001",
        },
        "items": [{"product_id": product_id, "quantity": quantity}],
        "payment_method": payment_method,
    }


async def place_order(client, headers, product_id, **kwargs):
    response = await client.post(f"{API}/orders", json=order_payload(product_id, **kwargs), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def move(client, headers, order_id, status, **extra):
    return await client.post(
        f"{API}/orders/{order_id}/status", json={"status": status, **extra}, headers=headers
    )


SHIPPING = {
    "courier_name": "BlueDart",
    "tracking_id": "BD998877",
    "expected_delivery_date": "2026-10-25",
}


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"


@pytest.mark.parametrize("headers", [
    {},
    {"X-Actor-Id": "not-a-uuid", "X-Actor-Role": "admin"},
    {"X-Actor-Id": "00000000-0000-0000-0000-000000000009", "X-Actor-Role": "intern"},
])
async def test_missing_or_invalid_actor_is_unauthorized(client, headers):
    response = await client.get(f"{API}/orders", headers=headers)
    assert response.status_code == 401


async def test_role_without_permission_is_forbidden(client, headers_for, api_product):
    order = await place_order(client, headers_for("operator"), api_product["id"])

    response = await client.delete(f"{API}/orders/{order['order']['id']}", headers=headers_for("operator"))
    assert response.status_code == 403

    response = await client.get(f"{API}/accounting/summary", headers=headers_for("operator"))
    assert response.status_code == 403


async def test_order_lifecycle(client, admin_headers, api_product):
    created = await place_order(client, admin_headers, api_product["id"], state="Tamil Nadu")
    order_id = created["order"]["id"]

    assert Decimal(created["order"]["total_amount"]) == Decimal("1180.00")
    assert created["proforma_invoice"]["is_igst"] is True
    assert Decimal(created["proforma_invoice"]["igst_amount"]) == Decimal("180.00")

    for status in ("confirmed", "packing"):
        response = await move(client, admin_headers, order_id, status)
        assert response.status_code == 200
        assert response.json()["changed"] is True

    response = await move(client, admin_headers, order_id, "shipped")
    assert response.status_code == 400

    response = await move(client, admin_headers, order_id, "shipped", shipping=SHIPPING)
    assert response.status_code == 200
    assert response.json()["order"]["tracking_id"] == "BD998877"

    response = await move(client, admin_headers, order_id, "delivered")
    body = response.json()
    assert response.status_code == 200
    assert body["invoice_pending"] is False
    final = body["final_invoice"]
    assert final["is_final"] is True
    assert final["invoice_number"].startswith("INV/")
    assert Decimal(final["total_amount"]) == Decimal("1180.00")

    response = await client.post(f"{API}/invoices/orders/{order_id}/final", headers=admin_headers)
    assert response.json()["id"] == final["id"]

    response = await client.get(f"{API}/invoices/orders/{order_id}", headers=admin_headers)
    assert [i["is_final"] for i in response.json()] == [False, True]

    response = await client.get(f"{API}/products/{api_product['id']}", headers=admin_headers)
    assert response.json()["stock_quantity"] == 16

    response = await client.get(f"{API}/orders/{order_id}/history", headers=admin_headers)
    assert [h["to_status"] for h in response.json()] == [
        "pending", "confirmed", "packing", "shipped", "delivered",
    ]


async def test_invalid_transition_maps_to_400(client, admin_headers, api_product):
    created = await place_order(client, admin_headers, api_product["id"])

    response = await move(client, admin_headers, created["order"]["id"], "delivered")

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "InvalidTransitionError"
    assert body["details"]["allowed"] == ["confirmed", "cancelled"]
    assert body["retryable"] is False


async def test_order_search_matches_customer(client, admin_headers, api_product):
    created = await place_order(client, admin_headers, api_product["id"])
    number = created["order"]["order_number"]

    for term in (number, "meera iyer", "meera@example"):
        response = await client.get(f"{API}/orders", params={"search": term}, headers=admin_headers)
        assert response.json()["total"] == 1, term

    response = await client.get(f"{API}/orders", params={"search": "nobody"}, headers=admin_headers)
    assert response.json()["total"] == 0


async def test_unknown_order_is_404(client, admin_headers):
    response = await client.get(f"{API}/orders/00000000-0000-0000-0000-00000000abcd", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundError"


async def test_payment_confirmation(client, headers_for, api_product):
    created = await place_order(client, headers_for("system"), api_product["id"])
    order_id = created["order"]["id"]
    payload = {"order_id": order_id, "payment_id": "pay_777", "amount": "1180.00"}

    response = await client.post(f"{API}/payments/confirm", json=payload, headers=headers_for("system"))
    assert response.status_code == 200
    assert response.json()["already_applied"] is False
    assert response.json()["order"]["payment_status"] == "paid"

    response = await client.post(f"{API}/payments/confirm", json=payload, headers=headers_for("system"))
    assert response.json()["already_applied"] is True

    payload["payment_id"] = "pay_888"
    response = await client.post(f"{API}/payments/confirm", json=payload, headers=headers_for("system"))
    assert response.status_code == 409


async def test_cod_settlement_and_accounting(client, admin_headers, headers_for, api_product):
    created = await place_order(client, admin_headers, api_product["id"], payment_method="cod")
    order_id = created["order"]["id"]
    accountant = headers_for("accountant")

    response = await client.post(f"{API}/orders/{order_id}/cod/settle", json={}, headers=accountant)
    assert response.status_code == 400
    assert response.json()["error"] == "CodSettlementError"

    response = await client.post(
        f"{API}/orders/{order_id}/cod/collect", json={"courier_name": "Delhivery"}, headers=accountant
    )
    assert response.status_code == 200
    assert response.json()["cod_status"] == "collected_by_courier"

    today = datetime.now(timezone.utc).date().isoformat()
    params = {"date_from": today, "date_to": today}

    summary = (await client.get(f"{API}/accounting/summary", params=params, headers=accountant)).json()
    assert Decimal(summary["revenue"]["total"]) == Decimal("0")
    assert Decimal(summary["in_transit"]["amount"]) == Decimal("1180.00")

    response = await client.post(f"{API}/orders/{order_id}/cod/settle", json={}, headers=accountant)
    assert response.json()["cod_status"] == "settled"

    summary = (await client.get(f"{API}/accounting/summary", params=params, headers=accountant)).json()
    assert Decimal(summary["revenue"]["total"]) == Decimal("1180.00")
    assert Decimal(summary["in_transit"]["amount"]) == Decimal("0")
    assert Decimal(summary["collection_efficiency"]) == Decimal("100")

    history = (await client.get(f"{API}/orders/{order_id}/cod/history", headers=accountant)).json()
    assert [entry["action"] for entry in history] == ["COD_COLLECTED", "COD_SETTLED"]

    response = await client.post(
        f"{API}/orders/{order_id}/cod/override",
        json={"status": "pending", "reason": "Bank reversal"},
        headers=accountant,
    )
    assert response.status_code == 403


async def test_admin_delete(client, admin_headers, api_product):
    created = await place_order(client, admin_headers, api_product["id"])
    order_id = created["order"]["id"]

    response = await client.delete(f"{API}/orders/{order_id}", params={"reason": "Duplicate"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["invoices_deleted"] == 1

    response = await client.get(f"{API}/orders/{order_id}", headers=admin_headers)
    assert response.status_code == 404


async def test_raw_material_movements(client, admin_headers):
    response = await client.post(
        f"{API}/raw-materials",
        json={"name": "Coconut Oil", "unit": "l", "initial_quantity": "8", "min_quantity": "10"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    material = response.json()
    assert material["is_low_stock"] is True

    response = await client.post(
        f"{API}/raw-materials/{material['id']}/movements",
        json={"action_type": "use", "quantity": "9"},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "InsufficientBalanceError"

    response = await client.post(
        f"{API}/raw-materials/{material['id']}/movements",
        json={"action_type": "add", "quantity": "12"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert Decimal(response.json()["new_balance"]) == Decimal("20")

    response = await client.get(f"{API}/ledger/raw_material/{material['id']}/verify", headers=admin_headers)
    assert response.json()["is_consistent"] is True

    response = await client.get(f"{API}/raw-materials/{material['id']}", headers=admin_headers)
    assert Decimal(response.json()["quantity"]) == Decimal("20")
    assert response.json()["is_low_stock"] is False

    response = await client.get(f"{API}/raw-materials/00000000-0000-0000-0000-00000000abcd", headers=admin_headers)
    assert response.status_code == 404
