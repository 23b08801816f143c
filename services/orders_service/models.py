from datetime import datetime
from typing import Optional
from decimal import Decimal
from pydantic import BaseModel, Field

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")

CASH_ON_DELIVERY = "cash_on_delivery"
CARD = "card"

# method -> (label, available)
PAYMENT_METHODS = {
    CASH_ON_DELIVERY: ("Pago contra entrega (efectivo o transferencia)", True),
    CARD: ("Tarjeta de crédito / débito (próximamente)", False),
}

class AddressDB(BaseModel):
    user_id: str
    region: str
    district: str
    street_type: str
    street_name: str
    number: str
    interior: Optional[str] = None
    reference: str
    updated_at: datetime = Field(default_factory=datetime.utcnow)

class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    total_amount: Decimal
    shipping_cost: Decimal
    payment_method: str = CASH_ON_DELIVERY
    status: str = "pending"
    # Frozen JSON snapshot, never rewritten after creation
    shipping_address: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

class OrderItemDB(BaseModel):
    order_id: str
    product_id: str
    product_name: str
    quantity: int
    price_at_purchase: Decimal


def compose_street_line(street_type: str, street_name: str, number: str, interior: Optional[str] = None) -> str:
    line = " ".join(part for part in (street_type, street_name, number) if part)
    if interior:
        line += f" Int. {interior}"
    return line
