"""Cart aggregation and its persisted session state."""

import json
from decimal import Decimal

import pytest

from tortillas.models import OrderType
from tortillas.schemas import CustomerInfo, MenuItemResponse
from tortillas.services.cart import CartService, line_key
from tortillas.services.session_store import MemorySessionStore


def menu_item(item_id: int, name: str, price: str, options=(), prep: int = 15) -> MenuItemResponse:
    return MenuItemResponse(
        id=item_id,
        name=name,
        description=None,
        price=Decimal(price),
        category="Tacos",
        preparation_time=prep,
        available=True,
        customizations=list(options),
    )


PASTOR = menu_item(1, "Tacos al Pastor", "1500", ["sem cebola", "extra coentro", "picante"])
NACHOS = menu_item(2, "Nachos Supremos", "1800", ["extra guacamole"])


@pytest.fixture
def session_store():
    return MemorySessionStore()


@pytest.fixture
async def cart(session_store):
    return await CartService.load(session_store, "sess-1", "ilha", [PASTOR, NACHOS])


async def test_repeated_add_keeps_one_line(cart):
    for _ in range(4):
        await cart.add_item(PASTOR, ["picante"])

    assert len(cart.lines) == 1
    assert cart.lines[0].quantity == 4


async def test_customization_order_does_not_matter(cart):
    await cart.add_item(PASTOR, ["picante", "sem cebola"])
    await cart.add_item(PASTOR, ["sem cebola", "picante"])

    assert len(cart.lines) == 1
    assert cart.lines[0].customizations == ["picante", "sem cebola"]
    assert line_key(1, ["sem cebola", "picante"]) == cart.lines[0].key


async def test_different_customizations_make_separate_lines(cart):
    await cart.add_item(PASTOR)
    await cart.add_item(PASTOR, ["picante"])

    assert [line.quantity for line in cart.lines] == [1, 1]
    assert cart.item_count == 2


async def test_unknown_customizations_are_dropped(cart):
    line = await cart.add_item(PASTOR, ["picante", "queijo azul"])

    assert line.customizations == ["picante"]


async def test_update_quantity_is_idempotent(cart):
    await cart.add_item(PASTOR)
    await cart.update_quantity(PASTOR.id, [], 3)
    first = [line.model_dump() for line in cart.lines]
    await cart.update_quantity(PASTOR.id, [], 3)

    assert [line.model_dump() for line in cart.lines] == first
    assert cart.lines[0].quantity == 3


@pytest.mark.parametrize("quantity", [0, -2])
async def test_zero_or_negative_quantity_removes_line(cart, quantity):
    await cart.add_item(PASTOR)
    await cart.add_item(NACHOS)

    result = await cart.update_quantity(PASTOR.id, [], quantity)

    assert result is None
    assert [line.menu_item_id for line in cart.lines] == [NACHOS.id]


async def test_update_of_missing_line_is_noop(cart):
    await cart.add_item(PASTOR)

    assert await cart.update_quantity(PASTOR.id, ["picante"], 5) is None
    assert cart.lines[0].quantity == 1


async def test_subtotal_uses_live_prices(cart):
    # Scenario A cart: 2 x Tacos al Pastor at 1500
    await cart.add_item(PASTOR)
    await cart.add_item(PASTOR)
    await cart.add_item(NACHOS, ["extra guacamole"])

    assert cart.subtotal() == Decimal("4800")

    cart.refresh_catalog([PASTOR.model_copy(update={"price": Decimal("1600")}), NACHOS])

    assert cart.subtotal() == Decimal("2") * Decimal("1600") + Decimal("1800")


async def test_refresh_catalog_prunes_withdrawn_items(cart):
    await cart.add_item(PASTOR)
    await cart.add_item(NACHOS)

    cart.refresh_catalog([NACHOS])

    assert [line.menu_item_id for line in cart.lines] == [NACHOS.id]


async def test_cart_survives_reload(cart, session_store):
    await cart.add_item(PASTOR, ["picante"])
    await cart.add_item(PASTOR, ["picante"])
    await cart.save_customer_info(CustomerInfo(name="Ana", phone="923000111", order_type=OrderType.TAKEAWAY))

    again = await CartService.load(session_store, "sess-1", "ilha", [PASTOR, NACHOS])

    assert again.lines == cart.lines
    assert again.customer_info().name == "Ana"
    assert again.customer_info().order_type == OrderType.TAKEAWAY


async def test_locations_have_independent_carts(cart, session_store):
    await cart.add_item(PASTOR)

    other = await CartService.load(session_store, "sess-1", "talatona", [PASTOR, NACHOS])

    assert other.is_empty
    assert await session_store.get("cart:sess-1:talatona") is None


async def test_unreadable_cart_is_discarded(session_store):
    await session_store.set("cart:sess-1:ilha", "{not json")

    cart = await CartService.load(session_store, "sess-1", "ilha", [PASTOR])

    assert cart.is_empty


async def test_load_prunes_lines_of_removed_items(session_store):
    payload = [{"menu_item_id": 99, "quantity": 2, "customizations": []},
               {"menu_item_id": 1, "quantity": 1, "customizations": []}]
    await session_store.set("cart:sess-1:ilha", json.dumps(payload))

    cart = await CartService.load(session_store, "sess-1", "ilha", [PASTOR])

    assert [line.menu_item_id for line in cart.lines] == [1]
    stored = json.loads(await session_store.get("cart:sess-1:ilha"))
    assert [entry["menu_item_id"] for entry in stored] == [1]


async def test_submission_key_changes_when_cart_changes(cart):
    await cart.add_item(PASTOR)
    key = await cart.submission_key()

    assert await cart.submission_key() == key

    await cart.add_item(PASTOR)

    assert await cart.submission_key() != key


async def test_reset_forgets_cart_customer_and_key(cart, session_store):
    await cart.add_item(PASTOR)
    await cart.save_customer_info(CustomerInfo(name="Ana", phone="1"))
    await cart.submission_key()

    await cart.reset()

    assert cart.is_empty
    assert cart.customer_info().name == ""
    for kind in ("cart", "customer", "checkout"):
        assert await session_store.get(f"{kind}:sess-1:ilha") is None


async def test_clear_all_covers_every_location(session_store):
    for location in ("ilha", "talatona"):
        cart = await CartService.load(session_store, "sess-1", location, [PASTOR])
        await cart.add_item(PASTOR)
        await cart.save_customer_info(CustomerInfo(name="Ana"))

    cart = await CartService.load(session_store, "sess-1", "ilha", [PASTOR])
    await cart.clear_all(["ilha", "talatona", "movel"])

    for location in ("ilha", "talatona"):
        restored = await CartService.load(session_store, "sess-1", location, [PASTOR])
        assert restored.is_empty
        assert restored.customer_info().name == ""


async def test_view_lists_lines_with_totals(cart):
    await cart.add_item(NACHOS)
    await cart.update_quantity(NACHOS.id, [], 2)

    view = cart.view()

    assert view.item_count == 2
    assert view.lines[0].name == "Nachos Supremos"
    assert view.lines[0].line_total == Decimal("3600")
    assert view.subtotal == Decimal("3600")


async def test_load_with_empty_catalog_drops_every_line(session_store):
    payload = [{"menu_item_id": 1, "quantity": 2, "customizations": []}]
    await session_store.set("cart:sess-1:ilha", json.dumps(payload))

    cart = await CartService.load(session_store, "sess-1", "ilha", [])

    assert cart.is_empty
    assert cart.subtotal() == Decimal("0")
    assert cart.view().lines == []
