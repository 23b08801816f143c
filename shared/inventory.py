import logging
from typing import Optional

from pymongo import ReturnDocument

logger = logging.getLogger(__name__)


async def decrement_stock(db, product_oid, quantity: int) -> Optional[dict]:
    """
    Atomically take `quantity` units off a product's stock.

    The `stock >= quantity` guard and the `$inc` run as one document update,
    so concurrent checkouts can never drive stock below zero. Returns the
    updated product, or None when there was not enough stock (or no product).
    """
    if quantity <= 0:
        raise ValueError("quantity must be > 0")
    product = await db.products.find_one_and_update(
        {"_id": product_oid, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}},
        return_document=ReturnDocument.AFTER,
    )
    if product:
        logger.info(
            f"stock decremented by {quantity} (stock={product['stock']})",
            extra={"product_id": str(product_oid)},
        )
    return product


async def restore_stock(db, product_oid, quantity: int) -> None:
    await db.products.update_one({"_id": product_oid}, {"$inc": {"stock": quantity}})
    logger.info(f"stock restored by {quantity}", extra={"product_id": str(product_oid)})


async def available_stock(db, product_oid) -> int:
    product = await db.products.find_one({"_id": product_oid}, {"stock": 1})
    if not product:
        return 0
    return int(product.get("stock") or 0)
