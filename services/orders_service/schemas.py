from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from shared.security_config import sanitize_input, normalize_phone
from services.orders_service.models import ORDER_STATUSES, PAYMENT_METHODS

STATUS_PATTERN = "^(" + "|".join(ORDER_STATUSES) + ")$"
PAYMENT_PATTERN = "^(" + "|".join(PAYMENT_METHODS) + ")$"

class AddressIn(BaseModel):
    # Blank fields are accepted here and reported together by the workflow
    district: str = ""
    street_type: str = "Av."
    street_name: str = ""
    number: str = ""
    interior: Optional[str] = None
    reference: str = ""

    @field_validator('district', 'street_type', 'street_name', 'number', 'interior', 'reference')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class AddressResponse(BaseModel):
    user_id: str
    region: str
    district: str
    street_type: str
    street_name: str
    number: str
    interior: Optional[str] = None
    reference: str
    street_line: str
    updated_at: datetime

class ShippingInfo(AddressIn):
    full_name: str = ""
    phone: str = ""

    @field_validator('full_name')
    def sanitize_name(cls, v):
        return sanitize_input(v)

    @field_validator('phone')
    def normalize_phone_number(cls, v):
        return normalize_phone(v)

class CheckoutLine(BaseModel):
    product_id: str
    name: str = ""
    brand: Optional[str] = None
    # Price the shopper saw when adding the line to the cart
    unit_price: Decimal = Field(..., gt=0)
    quantity: int = Field(..., gt=0)

class CheckoutRequest(BaseModel):
    items: List[CheckoutLine] = []
    shipping: ShippingInfo = Field(default_factory=ShippingInfo)
    payment_method: str = Field("cash_on_delivery", pattern=PAYMENT_PATTERN)

class ShippingSnapshot(BaseModel):
    fullName: str
    phone: str
    email: str
    district: str
    address: str
    reference: str

class PaymentOption(BaseModel):
    method: str
    label: str
    available: bool

class PaymentSummary(BaseModel):
    method: str
    label: str
    options: List[PaymentOption]

class CheckoutResponse(BaseModel):
    order_id: str
    status: str
    subtotal: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    payment: PaymentSummary
    shipping_address: ShippingSnapshot

class OrderItemResponse(BaseModel):
    product_id: str
    product_name: str
    quantity: int
    price_at_purchase: Decimal

class OrderResponse(BaseModel):
    id: str
    user_id: str
    total_amount: Decimal
    shipping_cost: Decimal
    payment_method: str
    status: str
    shipping_address: ShippingSnapshot
    items: List[OrderItemResponse] = []
    created_at: datetime
    updated_at: Optional[datetime] = None

class OrderStatusUpdate(BaseModel):
    status: str = Field(..., pattern=STATUS_PATTERN)

class AdminStats(BaseModel):
    total_sales: Decimal
    orders_today: int
    new_customers_today: int
    low_stock_products: int
