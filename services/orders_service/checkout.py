"""
Order placement workflow.

Turns a shopper's cart into an order in one server-side call:

1. best-effort upsert of the profile and shipping address,
2. stock verification for every line,
3. a compensating sequence that reserves stock, creates the order and
   writes its items. If any of those steps fails, the completed ones are
   undone in reverse order, so no orphaned order or lost stock is left.
"""
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import status

from shared.inventory import available_stock, decrement_stock, restore_stock
from shared.shipping import load_shipping_config, shipping_cost_for
from shared.utils import AppException, settings, to_money, ROLE_CUSTOMER
from services.orders_service.models import (
    PAYMENT_METHODS, AddressDB, OrderDB, OrderItemDB, compose_street_line
)
from services.orders_service.schemas import (
    CheckoutLine, CheckoutRequest, CheckoutResponse, PaymentOption, PaymentSummary,
    ShippingInfo, ShippingSnapshot
)

logger = logging.getLogger(__name__)

REQUIRED_SHIPPING_FIELDS = ("full_name", "phone", "district", "street_name", "number", "reference")


# --- Errors ---
class CheckoutError(AppException):
    code = "checkout_failed"

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST, **details):
        self.message = message
        self.details = details
        super().__init__(status_code, {"error": self.code, "message": message, **details})


class EmptyCartError(CheckoutError):
    code = "empty_cart"

    def __init__(self):
        super().__init__("Cart is empty")


class IncompleteShippingInfoError(CheckoutError):
    code = "incomplete_shipping_info"

    def __init__(self, missing: List[str]):
        super().__init__("Shipping information is incomplete", missing=missing)


class PaymentMethodUnavailableError(CheckoutError):
    code = "payment_method_unavailable"

    def __init__(self, method: str):
        super().__init__(f"Payment method '{method}' is not available yet", method=method)


class InsufficientStockError(CheckoutError):
    code = "insufficient_stock"

    def __init__(self, product_name: str, available: int):
        self.product_name = product_name
        self.available = available
        super().__init__(
            f"Not enough stock for {product_name}: {available} available",
            status.HTTP_409_CONFLICT,
            product_name=product_name,
            available=available,
        )


class RemoteCallFailedError(CheckoutError):
    code = "remote_call_failed"

    def __init__(self, step: str):
        super().__init__(f"Order could not be placed ({step} failed)", status.HTTP_502_BAD_GATEWAY, step=step)


def missing_shipping_fields(shipping: ShippingInfo) -> List[str]:
    return [name for name in REQUIRED_SHIPPING_FIELDS if not (getattr(shipping, name) or "").strip()]


def payment_summary(method: str) -> PaymentSummary:
    label, _ = PAYMENT_METHODS[method]
    return PaymentSummary(
        method=method,
        label=label,
        options=[
            PaymentOption(method=key, label=text, available=available)
            for key, (text, available) in PAYMENT_METHODS.items()
        ],
    )


# --- Compensating steps ---
@dataclass
class StockLine:
    product_id: str
    product_oid: ObjectId
    name: str
    quantity: int


@dataclass
class CheckoutContext:
    checkout_id: str
    user_id: str
    lines: List[CheckoutLine]
    order_doc: dict
    names: Dict[str, str] = field(default_factory=dict)
    order_id: Optional[str] = None
    item_ids: List[ObjectId] = field(default_factory=list)


class Step(ABC):
    def __init__(self, db, ctx: CheckoutContext):
        self.db = db
        self.ctx = ctx

    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    async def execute(self) -> None: ...

    @abstractmethod
    async def compensate(self) -> None: ...

    def _extra(self) -> dict:
        return {"step": self.name(), "order_id": self.ctx.order_id, "user_id": self.ctx.user_id}

    async def run(self) -> None:
        logger.info(f"[checkout={self.ctx.checkout_id}] STEP {self.name()}", extra=self._extra())
        await self.execute()
        logger.info(f"[checkout={self.ctx.checkout_id}] STEP {self.name()} OK", extra=self._extra())

    async def run_compensation(self) -> None:
        logger.info(f"[checkout={self.ctx.checkout_id}] COMPENSATE {self.name()}", extra=self._extra())
        await self.compensate()
        logger.info(f"[checkout={self.ctx.checkout_id}] COMPENSATE {self.name()} OK", extra=self._extra())


class ReserveStock(Step):
    def __init__(self, db, ctx: CheckoutContext, line: StockLine):
        super().__init__(db, ctx)
        self.line = line

    def name(self) -> str:
        return "ReserveStock"

    async def execute(self) -> None:
        product = await decrement_stock(self.db, self.line.product_oid, self.line.quantity)
        if not product:
            # Lost a race with another checkout since verification
            available = await available_stock(self.db, self.line.product_oid)
            raise InsufficientStockError(self.line.name, available)

    async def compensate(self) -> None:
        await restore_stock(self.db, self.line.product_oid, self.line.quantity)


class CreateOrder(Step):
    def name(self) -> str:
        return "CreateOrder"

    async def execute(self) -> None:
        result = await self.db.orders.insert_one(dict(self.ctx.order_doc))
        self.ctx.order_id = str(result.inserted_id)

    async def compensate(self) -> None:
        await self.db.orders.delete_one({"_id": ObjectId(self.ctx.order_id)})


class CreateOrderItems(Step):
    def name(self) -> str:
        return "CreateOrderItems"

    async def execute(self) -> None:
        docs = []
        for line in self.ctx.lines:
            item = OrderItemDB(
                order_id=self.ctx.order_id,
                product_id=line.product_id,
                product_name=line.name or self.ctx.names.get(line.product_id, ""),
                quantity=line.quantity,
                price_at_purchase=to_money(line.unit_price),
            )
            doc = item.dict()
            doc["price_at_purchase"] = float(doc["price_at_purchase"])
            docs.append(doc)
        result = await self.db.order_items.insert_many(docs)
        self.ctx.item_ids = list(result.inserted_ids)

    async def compensate(self) -> None:
        await self.db.order_items.delete_many({"order_id": self.ctx.order_id})


# --- Workflow ---
class OrderPlacement:
    """Places one order for an authenticated shopper."""

    def __init__(self, db, user: dict):
        self.db = db
        self.user = user
        self.user_id = user["sub"]

    async def place(self, req: CheckoutRequest) -> CheckoutResponse:
        if not req.items:
            raise EmptyCartError()
        missing = missing_shipping_fields(req.shipping)
        if missing:
            raise IncompleteShippingInfoError(missing)
        _, available = PAYMENT_METHODS[req.payment_method]
        if not available:
            raise PaymentMethodUnavailableError(req.payment_method)

        await self._upsert_profile(req.shipping)
        await self._upsert_address(req.shipping)

        stock_lines = await self._verify_stock(req.items)

        subtotal = to_money(sum((line.unit_price * line.quantity for line in req.items), Decimal("0")))
        shipping_cost = shipping_cost_for(subtotal, await load_shipping_config(self.db))
        total = to_money(subtotal + shipping_cost)
        snapshot = self._shipping_snapshot(req.shipping)

        order = OrderDB(
            user_id=self.user_id,
            total_amount=total,
            shipping_cost=shipping_cost,
            payment_method=req.payment_method,
            status="pending",
            shipping_address=json.dumps(snapshot.dict(), ensure_ascii=False),
        )
        order_doc = order.dict(by_alias=True, exclude={"id"})
        order_doc["total_amount"] = float(order_doc["total_amount"])
        order_doc["shipping_cost"] = float(order_doc["shipping_cost"])

        ctx = CheckoutContext(
            checkout_id=uuid.uuid4().hex[:12],
            user_id=self.user_id,
            lines=list(req.items),
            order_doc=order_doc,
            names={line.product_id: line.name for line in stock_lines},
        )
        steps: List[Step] = [ReserveStock(self.db, ctx, line) for line in stock_lines]
        steps.append(CreateOrder(self.db, ctx))
        steps.append(CreateOrderItems(self.db, ctx))

        await self._run(ctx, steps)

        return CheckoutResponse(
            order_id=ctx.order_id,
            status="pending",
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            total_amount=total,
            payment=payment_summary(req.payment_method),
            shipping_address=snapshot,
        )

    async def _run(self, ctx: CheckoutContext, steps: List[Step]) -> None:
        logger.info(f"[checkout={ctx.checkout_id}] CHECKOUT START lines={len(ctx.lines)}", extra={"user_id": self.user_id})
        completed: List[Step] = []
        try:
            for step in steps:
                await step.run()
                completed.append(step)
        except Exception as e:
            logger.warning(f"[checkout={ctx.checkout_id}] CHECKOUT FAILED: {e}", extra={"user_id": self.user_id})
            for step in reversed(completed):
                try:
                    await step.run_compensation()
                except Exception:
                    logger.error(
                        f"[checkout={ctx.checkout_id}] COMPENSATION FAILED at {step.name()}",
                        extra={"user_id": self.user_id, "order_id": ctx.order_id},
                        exc_info=True,
                    )
            if isinstance(e, CheckoutError):
                raise
            failed = steps[len(completed)].name()
            raise RemoteCallFailedError(failed) from e

        logger.info(f"[checkout={ctx.checkout_id}] CHECKOUT OK", extra={"user_id": self.user_id, "order_id": ctx.order_id})

    async def _upsert_profile(self, shipping: ShippingInfo) -> None:
        try:
            await self.db.users.update_one(
                {"_id": self.user_id},
                {
                    "$set": {
                        "email": self.user.get("email", ""),
                        "full_name": shipping.full_name,
                        "phone": shipping.phone,
                    },
                    "$setOnInsert": {"role": ROLE_CUSTOMER, "created_at": datetime.utcnow()},
                },
                upsert=True,
            )
        except Exception:
            logger.error("Profile upsert failed", extra={"user_id": self.user_id}, exc_info=True)

    async def _upsert_address(self, shipping: ShippingInfo) -> None:
        try:
            await save_address(self.db, self.user_id, shipping)
        except Exception:
            logger.error("Address upsert failed", extra={"user_id": self.user_id}, exc_info=True)

    async def _verify_stock(self, items: List[CheckoutLine]) -> List[StockLine]:
        requested: Dict[str, StockLine] = {}
        for line in items:
            if line.product_id in requested:
                requested[line.product_id].quantity += line.quantity
                continue
            try:
                oid = ObjectId(line.product_id)
            except (InvalidId, TypeError):
                raise InsufficientStockError(line.name or line.product_id, 0)
            requested[line.product_id] = StockLine(line.product_id, oid, line.name, line.quantity)

        cursor = self.db.products.find(
            {"_id": {"$in": [line.product_oid for line in requested.values()]}, "is_active": True},
            {"name": 1, "stock": 1},
        )
        products = {str(doc["_id"]): doc async for doc in cursor}

        for product_id, line in requested.items():
            product = products.get(product_id)
            stock = int(product.get("stock") or 0) if product else 0
            if product and not line.name:
                line.name = product.get("name", "")
            if stock < line.quantity:
                raise InsufficientStockError(line.name or product_id, stock)
        return list(requested.values())

    def _shipping_snapshot(self, shipping: ShippingInfo) -> ShippingSnapshot:
        return ShippingSnapshot(
            fullName=shipping.full_name,
            phone=shipping.phone,
            email=self.user.get("email", ""),
            district=shipping.district,
            address=compose_street_line(shipping.street_type, shipping.street_name, shipping.number, shipping.interior),
            reference=shipping.reference,
        )


async def save_address(db, user_id: str, address) -> dict:
    """Upsert the single address row of a user; the latest write wins."""
    fields = AddressDB(
        user_id=user_id,
        region=settings.SHIPPING_REGION,
        district=address.district,
        street_type=address.street_type,
        street_name=address.street_name,
        number=address.number,
        interior=address.interior or None,
        reference=address.reference,
    ).dict()
    await db.addresses.update_one({"user_id": user_id}, {"$set": fields}, upsert=True)
    return fields
