"""
Cart Aggregator

Accumulates (menu item, customizations, quantity) lines for one storefront
session at one location and persists them after every mutation.

Key layout in the session store:
    cart:{session_id}:{location_id}      serialized list of CartLine
    customer:{session_id}:{location_id}  serialized CustomerInfo
    checkout:{session_id}:{location_id}  idempotency key of the pending submission

Prices are never stored in the cart; subtotals read the live catalog.
"""

import json
import logging
import uuid
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import ValidationError as SchemaError

from tortillas.schemas import CartLine, CartLineView, CartView, CustomerInfo, MenuItemResponse
from tortillas.services.session_store import BaseSessionStore

logger = logging.getLogger(__name__)


def line_key(menu_item_id: int, customizations: Iterable[str]) -> tuple[int, tuple[str, ...]]:
    """Identity of a cart line: item id plus the sorted customization set."""
    return (menu_item_id, tuple(sorted(set(customizations))))


class CartService:
    """
    Cart and checkout form state of one (session, location) pair.

    Build it with ``CartService.load`` so that previously persisted state is
    restored. Carts of different locations never share lines.
    """

    def __init__(
        self,
        store: BaseSessionStore,
        session_id: str,
        location_id: str,
        catalog: Iterable[MenuItemResponse] = (),
    ):
        self.store = store
        self.session_id = session_id
        self.location_id = location_id
        self.lines: list[CartLine] = []
        self._customer = CustomerInfo()
        self._catalog: dict[int, MenuItemResponse] = {item.id: item for item in catalog}

    @classmethod
    async def load(
        cls,
        store: BaseSessionStore,
        session_id: str,
        location_id: str,
        catalog: Iterable[MenuItemResponse] = (),
    ) -> "CartService":
        cart = cls(store, session_id, location_id, catalog)

        raw_cart = await store.get(cart.cart_key)
        if raw_cart:
            try:
                cart.lines = [CartLine.model_validate(entry) for entry in json.loads(raw_cart)]
            except (ValueError, SchemaError) as e:
                logger.warning(f"Discarding unreadable cart {cart.cart_key}: {e}")
                cart.lines = []

        raw_customer = await store.get(cart.customer_key)
        if raw_customer:
            try:
                cart._customer = CustomerInfo.model_validate_json(raw_customer)
            except SchemaError as e:
                logger.warning(f"Discarding unreadable customer info {cart.customer_key}: {e}")

        if cart._prune_unknown_items():
            await cart._persist()
        return cart

    # =========================================================================
    # KEYS
    # =========================================================================

    @staticmethod
    def key_for(kind: str, session_id: str, location_id: str) -> str:
        return f"{kind}:{session_id}:{location_id}"

    @property
    def cart_key(self) -> str:
        return self.key_for("cart", self.session_id, self.location_id)

    @property
    def customer_key(self) -> str:
        return self.key_for("customer", self.session_id, self.location_id)

    @property
    def checkout_key(self) -> str:
        return self.key_for("checkout", self.session_id, self.location_id)

    # =========================================================================
    # CATALOG
    # =========================================================================

    def refresh_catalog(self, items: Iterable[MenuItemResponse]) -> None:
        """Swap the live price source, dropping lines whose item vanished."""
        self._catalog = {item.id: item for item in items}
        self._prune_unknown_items()

    def menu_item(self, menu_item_id: int) -> Optional[MenuItemResponse]:
        return self._catalog.get(menu_item_id)

    def _prune_unknown_items(self) -> bool:
        kept = [line for line in self.lines if line.menu_item_id in self._catalog]
        if len(kept) == len(self.lines):
            return False
        dropped = {line.menu_item_id for line in self.lines} - {line.menu_item_id for line in kept}
        logger.warning(f"Cart {self.cart_key}: removed lines for withdrawn menu items {sorted(dropped)}")
        self.lines = kept
        return True

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def _find(self, menu_item_id: int, customizations: Iterable[str]) -> Optional[CartLine]:
        wanted = line_key(menu_item_id, customizations)
        for line in self.lines:
            if line.key == wanted:
                return line
        return None

    async def add_item(
        self,
        item: MenuItemResponse,
        customizations: Iterable[str] = (),
    ) -> CartLine:
        """Add one unit of ``item``; an identical line has its quantity bumped."""
        self._catalog.setdefault(item.id, item)

        requested = set(customizations)
        allowed = requested & set(item.customizations)
        if allowed != requested:
            logger.warning(
                f"Ignoring unknown customizations {sorted(requested - allowed)} for '{item.name}'"
            )

        line = self._find(item.id, allowed)
        if line is not None:
            line.quantity += 1
        else:
            line = CartLine(menu_item_id=item.id, quantity=1, customizations=list(allowed))
            self.lines.append(line)

        await self._persist()
        return line

    async def update_quantity(
        self,
        menu_item_id: int,
        customizations: Iterable[str],
        new_quantity: int,
    ) -> Optional[CartLine]:
        """
        Set the quantity of an existing line.

        Zero or a negative quantity removes the line. Lines that are not in
        the cart are left alone.

        Returns:
            The updated line, or None if it was removed or never existed
        """
        line = self._find(menu_item_id, customizations)
        if line is None:
            return None

        if new_quantity <= 0:
            self.lines.remove(line)
            line = None
        elif line.quantity == new_quantity:
            return line
        else:
            line.quantity = new_quantity

        await self._persist()
        return line

    async def clear(self) -> None:
        self.lines = []
        await self._persist()

    async def save_customer_info(self, info: CustomerInfo) -> None:
        self._customer = info.model_copy()
        await self.store.set(self.customer_key, self._customer.model_dump_json())

    async def reset(self) -> None:
        """Forget cart, customer info and pending submission (after a confirmed order)."""
        self.lines = []
        self._customer = CustomerInfo()
        await self.store.delete(self.cart_key, self.customer_key, self.checkout_key)
        logger.info(f"Cart {self.cart_key} reset")

    async def clear_all(self, location_ids: Iterable[str]) -> None:
        """Drop the saved state of this session at every location."""
        keys = [
            self.key_for(kind, self.session_id, location_id)
            for location_id in location_ids
            for kind in ("cart", "customer", "checkout")
        ]
        await self.store.delete(*keys)
        self.lines = []
        self._customer = CustomerInfo()
        logger.info(f"Cleared saved storefront data of session {self.session_id}")

    async def _persist(self) -> None:
        payload = json.dumps([line.model_dump() for line in self.lines])
        await self.store.set(self.cart_key, payload)
        # Different contents means a different order: a new key is minted on next checkout
        await self.store.delete(self.checkout_key)

    # =========================================================================
    # READS
    # =========================================================================

    def customer_info(self) -> CustomerInfo:
        return self._customer.model_copy()

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def unit_price(self, line: CartLine) -> Decimal:
        item = self._catalog.get(line.menu_item_id)
        if item is None:
            raise KeyError(f"Menu item #{line.menu_item_id} is not in the catalog")
        return item.price

    def subtotal(self) -> Decimal:
        """Sum of live price × quantity over the current lines."""
        return sum((self.unit_price(line) * line.quantity for line in self.lines), Decimal("0"))

    async def submission_key(self) -> str:
        """Idempotency key for submitting the current cart contents."""
        key = await self.store.get(self.checkout_key)
        if not key:
            key = uuid.uuid4().hex
            await self.store.set(self.checkout_key, key)
        return key

    def view(self) -> CartView:
        lines = []
        for line in self.lines:
            item = self._catalog[line.menu_item_id]
            lines.append(CartLineView(
                menu_item_id=line.menu_item_id,
                name=item.name,
                unit_price=item.price,
                quantity=line.quantity,
                customizations=list(line.customizations),
                line_total=item.price * line.quantity,
            ))
        return CartView(
            session_id=self.session_id,
            location_id=self.location_id,
            lines=lines,
            item_count=self.item_count,
            subtotal=self.subtotal(),
        )
