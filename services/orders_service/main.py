from fastapi import FastAPI, Depends, HTTPException, status, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import json

from shared.utils import (
    get_db_client, get_database, settings, str_to_oid, to_money, SuccessResponse,
    HealthResponse, NotFoundException, get_current_user, require_admin
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from services.orders_service.schemas import (
    AddressIn, AddressResponse, CheckoutRequest, CheckoutResponse,
    OrderResponse, OrderItemResponse, OrderStatusUpdate, ShippingSnapshot, AdminStats, STATUS_PATTERN
)
from services.orders_service.models import compose_street_line
from services.orders_service.checkout import (
    OrderPlacement, IncompleteShippingInfoError, save_address
)

# Setup Logging
logger = setup_logging("orders-service")

app = FastAPI(title="Orders Service")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="orders-service")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ADDRESS_REQUIRED_FIELDS = ("district", "street_name", "number", "reference")

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = get_database(app.mongodb_client)
    # Indexes
    await app.mongodb.addresses.create_index("user_id", unique=True)
    await app.mongodb.orders.create_index([("user_id", 1), ("created_at", -1)])
    await app.mongodb.orders.create_index("status")
    await app.mongodb.order_items.create_index("order_id")

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

# --- Helpers ---
def to_address_response(doc: dict) -> AddressResponse:
    doc = {k: v for k, v in doc.items() if k != "_id"}
    doc["street_line"] = compose_street_line(doc["street_type"], doc["street_name"], doc["number"], doc.get("interior"))
    return AddressResponse(**doc)

async def to_order_response(doc: dict, with_items: bool = False) -> OrderResponse:
    order_id = str(doc["_id"])
    items = []
    if with_items:
        async for item in app.mongodb.order_items.find({"order_id": order_id}):
            item["price_at_purchase"] = to_money(item["price_at_purchase"])
            items.append(OrderItemResponse(**item))
    return OrderResponse(
        id=order_id,
        user_id=doc["user_id"],
        total_amount=to_money(doc["total_amount"]),
        shipping_cost=to_money(doc.get("shipping_cost", 0)),
        payment_method=doc.get("payment_method", "cash_on_delivery"),
        status=doc["status"],
        shipping_address=ShippingSnapshot(**json.loads(doc["shipping_address"])),
        items=items,
        created_at=doc["created_at"],
        updated_at=doc.get("updated_at")
    )

def start_of_today() -> datetime:
    now = datetime.utcnow()
    return datetime(now.year, now.month, now.day)

# --- Endpoints ---

# Address
@app.get("/addresses/me", response_model=SuccessResponse[AddressResponse])
async def get_my_address(user: dict = Depends(get_current_user)):
    address = await app.mongodb.addresses.find_one({"user_id": user["sub"]})
    if not address:
        raise NotFoundException("Address not found")
    return SuccessResponse(data=to_address_response(address))

@app.put("/addresses/me", response_model=SuccessResponse[AddressResponse])
async def save_my_address(address: AddressIn, user: dict = Depends(get_current_user)):
    missing = [name for name in ADDRESS_REQUIRED_FIELDS if not getattr(address, name).strip()]
    if missing:
        raise IncompleteShippingInfoError(missing)
    fields = await save_address(app.mongodb, user["sub"], address)
    return SuccessResponse(data=to_address_response(fields), message="Address saved successfully")

# Checkout
@app.post("/checkout", response_model=SuccessResponse[CheckoutResponse])
@limiter.limit("10/minute")
async def checkout(body: CheckoutRequest, request: Request, user: dict = Depends(get_current_user)):
    request.state.user_id = user["sub"]
    result = await OrderPlacement(app.mongodb, user).place(body)
    logger.info("Order placed", extra={"order_id": result.order_id, "user_id": user["sub"]})
    return SuccessResponse(data=result, message="Order created successfully")

# Orders
@app.get("/orders", response_model=SuccessResponse[List[OrderResponse]])
async def list_orders(
    user: dict = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100)
):
    skip = (page - 1) * limit
    cursor = app.mongodb.orders.find({"user_id": user["sub"]}).sort("created_at", -1).skip(skip).limit(limit)
    orders = [await to_order_response(doc) async for doc in cursor]
    return SuccessResponse(data=orders)

@app.get("/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(order_id: str, user: dict = Depends(get_current_user)):
    order = await app.mongodb.orders.find_one({"_id": str_to_oid(order_id), "user_id": user["sub"]})
    if not order:
        raise NotFoundException("Order not found")
    return SuccessResponse(data=await to_order_response(order, with_items=True))

# Admin
@app.get("/admin/orders", response_model=SuccessResponse[List[OrderResponse]])
async def admin_list_orders(
    admin: dict = Depends(require_admin),
    status_filter: Optional[str] = Query(None, alias="status", pattern=STATUS_PATTERN),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100)
):
    query = {}
    if status_filter:
        query["status"] = status_filter
    skip = (page - 1) * limit
    cursor = app.mongodb.orders.find(query).sort("created_at", -1).skip(skip).limit(limit)
    orders = [await to_order_response(doc, with_items=True) async for doc in cursor]
    return SuccessResponse(data=orders)

@app.put("/admin/orders/{order_id}/status", response_model=SuccessResponse[OrderResponse])
async def update_order_status(order_id: str, status_update: OrderStatusUpdate, admin: dict = Depends(require_admin)):
    order = await app.mongodb.orders.find_one({"_id": str_to_oid(order_id)})
    if not order:
        raise NotFoundException("Order not found")

    await app.mongodb.orders.update_one(
        {"_id": order["_id"]},
        {"$set": {"status": status_update.status, "updated_at": datetime.utcnow()}}
    )
    logger.info(
        f"Order status {order['status']} -> {status_update.status}",
        extra={"order_id": order_id, "user_id": admin["sub"]}
    )

    updated_order = await app.mongodb.orders.find_one({"_id": order["_id"]})
    return SuccessResponse(data=await to_order_response(updated_order, with_items=True), message="Order status updated")

@app.get("/admin/stats", response_model=SuccessResponse[AdminStats])
async def admin_stats(admin: dict = Depends(require_admin)):
    today = start_of_today()

    total_sales = Decimal("0")
    async for doc in app.mongodb.orders.find({"status": {"$ne": "cancelled"}}, {"total_amount": 1}):
        total_sales += to_money(doc["total_amount"])

    orders_today = await app.mongodb.orders.count_documents({"created_at": {"$gte": today}})
    new_customers = await app.mongodb.users.count_documents({"created_at": {"$gte": today}})
    low_stock = await app.mongodb.products.count_documents(
        {"is_active": True, "stock": {"$lt": settings.LOW_STOCK_THRESHOLD}}
    )

    return SuccessResponse(data=AdminStats(
        total_sales=to_money(total_sales),
        orders_today=orders_today,
        new_customers_today=new_customers,
        low_stock_products=low_stock
    ))

@app.get("/health", response_model=HealthResponse)
async def health_check():
    db_status = "unhealthy"
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    if db_status != "connected":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service="orders-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status
    )
