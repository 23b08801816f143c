import logging
from typing import List, Optional

from storefront_client.api import ApiError
from storefront_client.cart import Cart
from storefront_client.session import Session, access_decision

logger = logging.getLogger(__name__)

CHECKOUT_PATH = "/checkout"
CASH_ON_DELIVERY = "cash_on_delivery"


# --- Errors ---
class OrderError(Exception):
    code = "order_failed"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class Unauthenticated(OrderError):
    code = "unauthenticated"

    def __init__(self, redirect_to: str):
        self.redirect_to = redirect_to
        super().__init__("Sign in to place your order")


class EmptyCart(OrderError):
    code = "empty_cart"


class IncompleteShippingInfo(OrderError):
    code = "incomplete_shipping_info"

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        self.missing = missing or []
        super().__init__(message)


class PaymentMethodUnavailable(OrderError):
    code = "payment_method_unavailable"


class InsufficientStock(OrderError):
    code = "insufficient_stock"

    def __init__(self, message: str, product_name: str = "", available: int = 0):
        self.product_name = product_name
        self.available = available
        super().__init__(message)


class RemoteCallFailed(OrderError):
    code = "remote_call_failed"

    def __init__(self, message: str, step: Optional[str] = None):
        self.step = step
        super().__init__(message)


def order_error_from(exc: ApiError) -> OrderError:
    """Map an error answer of the checkout endpoint to an OrderError."""
    if exc.status_code == 401:
        return Unauthenticated(access_decision(CHECKOUT_PATH, False, None).redirect_to)

    detail = exc.detail if isinstance(exc.detail, dict) else {"message": str(exc.detail)}
    code = detail.get("error")
    message = detail.get("message") or "Order could not be placed"

    if code == EmptyCart.code:
        return EmptyCart(message)
    if code == IncompleteShippingInfo.code:
        return IncompleteShippingInfo(message, detail.get("missing"))
    if code == PaymentMethodUnavailable.code:
        return PaymentMethodUnavailable(message)
    if code == InsufficientStock.code:
        return InsufficientStock(message, detail.get("product_name", ""), detail.get("available", 0))
    return RemoteCallFailed(message, detail.get("step"))


class CheckoutFlow:
    """
    Client side of order placement.

    A successful order clears the cart and marks the flow finished; an
    incomplete address re-opens the address form.
    """

    def __init__(self, session: Session):
        self.session = session
        self.finished = False
        self.address_form_open = False
        self.confirmation: Optional[dict] = None

    async def place_order(self, cart: Cart, address: dict, payment_method: str = CASH_ON_DELIVERY) -> str:
        if not self.session.is_authenticated:
            raise Unauthenticated(self.session.check_access(CHECKOUT_PATH).redirect_to)
        if cart.is_empty:
            raise EmptyCart("Cart is empty")

        payload = {
            "items": cart.checkout_lines(),
            "shipping": address,
            "payment_method": payment_method,
        }
        try:
            self.confirmation = await self.session.api.checkout(payload)
        except ApiError as e:
            error = order_error_from(e)
            if isinstance(error, IncompleteShippingInfo):
                self.address_form_open = True
            logger.warning(f"Checkout failed: {error.code}")
            raise error from e

        cart.clear()
        self.finished = True
        self.address_form_open = False
        order_id = self.confirmation["order_id"]
        logger.info("Order placed", extra={"order_id": order_id})
        return order_id
