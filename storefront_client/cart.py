"""
Client-local shopping cart.

The cart lives on the shopper's device: every change is written through to
`LocalStorage`, and totals are derived on read. Shipping threshold and flat
fee come from a `ShippingConfigProvider`, which keeps its last known values
when the catalog service can't be reached.
"""
import logging
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import List, Optional

from storefront_client.api import ApiError
from storefront_client.local_storage import LocalStorage

logger = logging.getLogger(__name__)

CART_KEY = "cart"
# Products without a known stock clamp against this
UNKNOWN_STOCK_LIMIT = 999

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS)


@dataclass
class CartItem:
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    brand: Optional[str] = None
    stock_snapshot: Optional[int] = None

    @property
    def stock_limit(self) -> int:
        return UNKNOWN_STOCK_LIMIT if self.stock_snapshot is None else self.stock_snapshot

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict:
        data = asdict(self)
        data["unit_price"] = str(self.unit_price)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CartItem":
        return cls(
            product_id=data["product_id"],
            name=data.get("name", ""),
            unit_price=to_money(data["unit_price"]),
            quantity=int(data["quantity"]),
            brand=data.get("brand"),
            stock_snapshot=data.get("stock_snapshot"),
        )


class ShippingConfigProvider:
    """Free-shipping threshold and flat fee, fetched once and cached."""

    DEFAULT_THRESHOLD = Decimal("100")
    DEFAULT_FEE = Decimal("5")

    def __init__(self, api=None, threshold: Decimal = DEFAULT_THRESHOLD, fee: Decimal = DEFAULT_FEE):
        self.api = api
        self.free_shipping_threshold = to_money(threshold)
        self.shipping_cost = to_money(fee)
        self.loaded = False

    async def load(self):
        if not self.loaded:
            await self.refresh()

    async def refresh(self):
        if self.api is None:
            return
        try:
            data = await self.api.shipping_settings()
            threshold = to_money(data["free_shipping_threshold"])
            fee = to_money(data["shipping_cost"])
        except (ApiError, KeyError, TypeError, ArithmeticError):
            logger.warning("Could not fetch shipping settings, keeping cached values", exc_info=True)
            return
        self.free_shipping_threshold = threshold
        self.shipping_cost = fee
        self.loaded = True


class Cart:
    def __init__(self, storage: LocalStorage, shipping: Optional[ShippingConfigProvider] = None):
        self.storage = storage
        self.shipping = shipping or ShippingConfigProvider()
        self._items: List[CartItem] = [CartItem.from_dict(d) for d in storage.get(CART_KEY, [])]

    def _persist(self):
        self.storage.set(CART_KEY, [item.to_dict() for item in self._items])

    def _find(self, product_id: str) -> Optional[CartItem]:
        for item in self._items:
            if item.product_id == product_id:
                return item
        return None

    @property
    def items(self) -> List[CartItem]:
        return list(self._items)

    def add(self, product: dict, quantity: int = 1) -> CartItem:
        """
        Add `quantity` units of a catalog product.

        A product already in the cart has its quantity increased; either way
        the stored quantity is clamped to the product's stock.
        """
        product_id = product["id"]
        if product.get("stock") is not None and product["stock"] < 1:
            raise ValueError(f"{product.get('name', product_id)} is out of stock")
        existing = self._find(product_id)
        if existing:
            # Clamp against the stock the catalog reports now
            existing.stock_snapshot = product.get("stock")
            existing.quantity = max(1, min(existing.quantity + quantity, existing.stock_limit))
            item = existing
        else:
            item = CartItem(
                product_id=product_id,
                name=product.get("name", ""),
                unit_price=to_money(product["price"]),
                quantity=0,
                brand=product.get("brand"),
                stock_snapshot=product.get("stock"),
            )
            item.quantity = max(1, min(quantity, item.stock_limit))
            self._items.append(item)
        self._persist()
        return item

    def update_quantity(self, product_id: str, quantity: int):
        if quantity < 1:
            return
        item = self._find(product_id)
        if not item:
            return
        item.quantity = min(quantity, item.stock_limit)
        self._persist()

    def remove(self, product_id: str):
        self._items = [item for item in self._items if item.product_id != product_id]
        self._persist()

    def clear(self):
        self._items = []
        self._persist()

    @property
    def is_empty(self) -> bool:
        return not self._items

    @property
    def total(self) -> Decimal:
        return to_money(sum((item.line_total for item in self._items), Decimal("0")))

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self._items)

    @property
    def free_shipping_threshold(self) -> Decimal:
        return self.shipping.free_shipping_threshold

    @property
    def shipping_cost(self) -> Decimal:
        total = self.total
        if total == 0 or total >= self.shipping.free_shipping_threshold:
            return to_money(0)
        return self.shipping.shipping_cost

    @property
    def grand_total(self) -> Decimal:
        return to_money(self.total + self.shipping_cost)

    def checkout_lines(self) -> List[dict]:
        return [
            {
                "product_id": item.product_id,
                "name": item.name,
                "brand": item.brand,
                "unit_price": str(item.unit_price),
                "quantity": item.quantity,
            }
            for item in self._items
        ]
