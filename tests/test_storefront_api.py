"""Server-held storefront cart and checkout."""

from decimal import Decimal

import pytest

BASE = "/api/sessions/web-42"


@pytest.fixture
async def filled_cart(client, menu):
    pastor = menu["Tacos al Pastor"]
    for _ in range(2):
        response = await client.post(f"{BASE}/ilha/cart/items", json={"menu_item_id": pastor.id})
        assert response.status_code == 200, response.text
    return pastor


async def save_customer(client, location: str = "ilha", **fields) -> None:
    data = {"name": "Ana Silva", "phone": "923000111", "order_type": "takeaway", **fields}
    response = await client.put(f"{BASE}/{location}/customer", json=data)
    assert response.status_code == 200, response.text


async def test_cart_accumulates_lines(client, filled_cart):
    cart = (await client.get(f"{BASE}/ilha/cart")).json()

    assert cart["item_count"] == 2
    assert len(cart["lines"]) == 1
    assert Decimal(cart["subtotal"]) == Decimal("3000")


async def test_update_and_remove_line(client, filled_cart, menu):
    nachos = menu["Nachos Supremos"]
    await client.post(f"{BASE}/ilha/cart/items", json={"menu_item_id": nachos.id, "customizations": ["extra guacamole"]})

    response = await client.patch(
        f"{BASE}/ilha/cart/items",
        json={"menu_item_id": filled_cart.id, "customizations": [], "quantity": 0},
    )

    lines = response.json()["lines"]
    assert [line["menu_item_id"] for line in lines] == [nachos.id]
    assert lines[0]["customizations"] == ["extra guacamole"]


async def test_adding_unknown_item_is_not_found(client, menu):
    response = await client.post(f"{BASE}/ilha/cart/items", json={"menu_item_id": 9999})

    assert response.status_code == 404


async def test_unknown_location_is_rejected(client, menu):
    response = await client.get(f"{BASE}/benguela/cart")

    assert response.status_code == 400
    assert "ilha" in response.json()["suggestion"]


async def test_customer_info_is_saved_per_location(client, menu):
    await save_customer(client, "ilha", delivery_address="Rua 1")

    ilha = (await client.get(f"{BASE}/ilha/customer")).json()
    talatona = (await client.get(f"{BASE}/talatona/customer")).json()

    assert ilha["name"] == "Ana Silva"
    assert ilha["delivery_address"] == "Rua 1"
    assert talatona["name"] == ""


async def test_checkout_places_order_and_empties_cart(client, filled_cart):
    await save_customer(client, order_type="delivery", delivery_address="Rua da Missão 12")

    response = await client.post(f"{BASE}/ilha/checkout")

    assert response.status_code == 200, response.text
    order = response.json()["order"]
    assert Decimal(order["total_amount"]) == Decimal("3500")
    assert order["preparation_time"] == 45
    cart = (await client.get(f"{BASE}/ilha/cart")).json()
    assert cart["lines"] == []
    assert (await client.get(f"{BASE}/ilha/customer")).json()["name"] == ""


async def test_checkout_validation_keeps_cart(client, filled_cart):
    await save_customer(client, order_type="delivery")

    response = await client.post(f"{BASE}/ilha/checkout")

    assert response.status_code == 400
    assert "Delivery address is required for delivery orders" in response.json()["problems"]
    assert (await client.get(f"{BASE}/ilha/cart")).json()["item_count"] == 2


async def test_dine_in_checkout_occupies_table(client, filled_cart):
    table = (await client.post("/api/tables", json={"table_number": 5, "location_id": "ilha", "seats": 4})).json()
    await save_customer(client, order_type="dine-in", table_id=table["id"])

    response = await client.post(f"{BASE}/ilha/checkout")

    assert response.status_code == 200, response.text
    assert (await client.get(f"/api/tables/{table['id']}")).json()["status"] == "occupied"


async def test_dine_in_checkout_on_occupied_table_keeps_cart(client, filled_cart):
    table = (await client.post(
        "/api/tables",
        json={"table_number": 5, "location_id": "ilha", "seats": 4, "status": "occupied"},
    )).json()
    await save_customer(client, order_type="dine-in", table_id=table["id"])

    response = await client.post(f"{BASE}/ilha/checkout")

    assert response.status_code == 409
    cart = (await client.get(f"{BASE}/ilha/cart")).json()
    assert cart["item_count"] == 2
    assert (await client.get(f"{BASE}/ilha/customer")).json()["table_id"] == table["id"]
    assert (await client.get("/api/orders")).json()["total"] == 0


async def test_clear_cart(client, filled_cart):
    response = await client.delete(f"{BASE}/ilha/cart")

    assert response.json()["item_count"] == 0


async def test_clear_session_removes_every_location(client, filled_cart, menu):
    await client.post(f"{BASE}/talatona/cart/items", json={"menu_item_id": menu["Limonada Natural"].id})
    await save_customer(client, "talatona")

    response = await client.delete(BASE)

    assert response.status_code == 200
    for location in ("ilha", "talatona"):
        assert (await client.get(f"{BASE}/{location}/cart")).json()["item_count"] == 0
    assert (await client.get(f"{BASE}/talatona/customer")).json()["name"] == ""


async def test_cart_survives_deletion_of_its_only_item(client):
    item = (await client.post(
        "/api/menu-items",
        json={"name": "Solo", "price": "900", "category": "Extras"},
    )).json()
    await client.post(f"{BASE}/ilha/cart/items", json={"menu_item_id": item["id"]})

    await client.delete(f"/api/menu-items/{item['id']}")
    response = await client.get(f"{BASE}/ilha/cart")

    assert response.status_code == 200
    assert response.json()["lines"] == []
    assert Decimal(response.json()["subtotal"]) == Decimal("0")
