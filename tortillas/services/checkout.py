"""
Checkout

Composes the cart into a submission, hands it to a submitter and clears
the cart only once the submitter confirmed the order.

The submitter is any coroutine taking an OrderSubmission: the in-process
``OrderService.create_order`` on the server, ``OrderingClient.create_order``
on a remote storefront.
"""

import logging
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from tortillas.core.errors import OrderingError
from tortillas.schemas import OrderSubmission, TableResponse
from tortillas.services.cart import CartService
from tortillas.services.composer import OrderComposer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CheckoutService:

    def __init__(self, cart: CartService, composer: Optional[OrderComposer] = None):
        self.cart = cart
        self.composer = composer or OrderComposer()

    async def prepare(self, tables: Optional[Iterable[TableResponse]] = None) -> OrderSubmission:
        """Validate and compose without submitting."""
        key = await self.cart.submission_key()
        return self.composer.compose(
            self.cart,
            self.cart.customer_info(),
            self.cart.location_id,
            tables,
            idempotency_key=key,
        )

    async def submit(
        self,
        submit: Callable[[OrderSubmission], Awaitable[T]],
        tables: Optional[Iterable[TableResponse]] = None,
    ) -> T:
        """
        Place the order.

        On any failure the cart, customer info and idempotency key are kept,
        so a retry by the user re-sends the same submission.
        """
        submission = await self.prepare(tables)

        try:
            result = await submit(submission)
        except OrderingError as e:
            logger.info(f"Checkout of {self.cart.cart_key} refused: {e.detail}")
            raise
        except Exception:
            logger.exception(f"Checkout of {self.cart.cart_key} failed")
            raise

        await self.cart.reset()
        logger.info(f"Checkout of {self.cart.cart_key} confirmed (key {submission.idempotency_key})")
        return result
