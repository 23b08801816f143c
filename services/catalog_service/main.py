from fastapi import FastAPI, Depends, HTTPException, status, Query, Request, UploadFile, File
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import re

from shared.utils import (
    get_db_client, get_database, settings, str_to_oid, to_money, SuccessResponse, HealthResponse,
    NotFoundException, AppException, get_current_user, require_admin
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter
from shared.inventory import decrement_stock, available_stock
from shared.shipping import SHIPPING_CONFIG_KEY, load_shipping_config

from services.catalog_service.schemas import (
    ProductCreate, ProductUpdate, ProductResponse, ProductListResponse,
    ImageUploadResponse, StockDecrement, StockResponse, ShippingConfig,
    FavoriteCreate, FavoriteSync, ReviewCreate, ReviewResponse
)
from services.catalog_service.models import ProductDB, FavoriteDB, ReviewDB, primary_image
from services.catalog_service.storage import save_product_image, MEDIA_URL_PREFIX

# Setup Logging
logger = setup_logging("catalog-service")

app = FastAPI(title="Catalog Service")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="catalog-service")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Public bucket for product images
app.mount(MEDIA_URL_PREFIX, StaticFiles(directory=settings.MEDIA_ROOT, check_dir=False), name="media")

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = get_database(app.mongodb_client)
    # Indexes
    await app.mongodb.products.create_index([("created_at", -1)])
    await app.mongodb.products.create_index("brand")
    await app.mongodb.favorites.create_index([("user_id", 1), ("product_id", 1)], unique=True)
    await app.mongodb.reviews.create_index([("product_id", 1), ("user_id", 1)], unique=True)
    await app.mongodb.settings.create_index("key", unique=True)

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

# --- Helpers ---
MONEY_FIELDS = ("price", "original_price")

def to_storage(data: dict) -> dict:
    # Money is stored as float, read back through Decimal(str(...))
    for field in MONEY_FIELDS:
        if data.get(field) is not None:
            data[field] = float(data[field])
    return data

def to_product_response(doc: dict) -> ProductResponse:
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    doc["primary_image"] = primary_image(doc)
    for field in MONEY_FIELDS:
        if doc.get(field) is not None:
            doc[field] = to_money(doc[field])
    if not isinstance(doc.get("images"), list):
        doc["images"] = []
    return ProductResponse(**doc)

async def get_active_product(product_id: str) -> dict:
    product = await app.mongodb.products.find_one({"_id": str_to_oid(product_id), "is_active": True})
    if not product:
        raise NotFoundException("Product not found")
    return product

async def favorite_products(user_id: str) -> List[ProductResponse]:
    cursor = app.mongodb.favorites.find({"user_id": user_id}).sort("created_at", 1)
    product_ids = [doc["product_id"] async for doc in cursor]
    if not product_ids:
        return []
    oids = [str_to_oid(pid) for pid in product_ids]
    docs = await app.mongodb.products.find({"_id": {"$in": oids}, "is_active": True}).to_list(length=None)
    by_id = {str(doc["_id"]): doc for doc in docs}
    return [to_product_response(by_id[pid]) for pid in product_ids if pid in by_id]

async def refresh_review_stats(product_oid) -> None:
    ratings = [doc["rating"] async for doc in app.mongodb.reviews.find({"product_id": str(product_oid)})]
    if not ratings:
        return
    await app.mongodb.products.update_one(
        {"_id": product_oid},
        {"$set": {"rating": round(sum(ratings) / len(ratings), 1), "reviews": len(ratings)}}
    )

# --- Endpoints ---

# Products
@app.get("/products", response_model=SuccessResponse[ProductListResponse])
@limiter.limit("60/minute")
async def list_products(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    brand: Optional[str] = None,
    category: Optional[str] = None,
    is_offer: Optional[bool] = None,
    is_new: Optional[bool] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    search: Optional[str] = None
):
    query = {"is_active": True}
    if brand:
        query["brand"] = brand
    if category:
        query["category_id"] = category
    if is_offer is not None:
        query["is_offer"] = is_offer
    if is_new is not None:
        query["is_new"] = is_new

    price_query = {}
    if min_price is not None:
        price_query["$gte"] = float(min_price)
    if max_price is not None:
        price_query["$lte"] = float(max_price)
    if price_query:
        query["price"] = price_query

    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}

    skip = (page - 1) * limit
    total = await app.mongodb.products.count_documents(query)
    cursor = app.mongodb.products.find(query).sort("created_at", -1).skip(skip).limit(limit)
    products_docs = await cursor.to_list(length=limit)

    return SuccessResponse(data=ProductListResponse(
        products=[to_product_response(doc) for doc in products_docs],
        total=total,
        page=page,
        limit=limit
    ))

@app.get("/products/{product_id}", response_model=SuccessResponse[ProductResponse])
@limiter.limit("60/minute")
async def get_product(product_id: str, request: Request):
    product = await get_active_product(product_id)
    return SuccessResponse(data=to_product_response(product))

@app.post("/products", response_model=SuccessResponse[ProductResponse])
async def create_product(product: ProductCreate, admin: dict = Depends(require_admin)):
    product_db = ProductDB(**product.dict())
    new_product = await app.mongodb.products.insert_one(
        to_storage(product_db.dict(by_alias=True, exclude={"id"}))
    )
    created_product = await app.mongodb.products.find_one({"_id": new_product.inserted_id})
    logger.info("Product created", extra={"product_id": str(new_product.inserted_id), "user_id": admin["sub"]})

    return SuccessResponse(data=to_product_response(created_product), message="Product created successfully")

@app.put("/products/{product_id}", response_model=SuccessResponse[ProductResponse])
async def update_product(product_id: str, product_update: ProductUpdate, admin: dict = Depends(require_admin)):
    product = await get_active_product(product_id)

    update_data = to_storage({k: v for k, v in product_update.dict().items() if v is not None})
    if "images" in update_data:
        update_data["image"] = update_data["images"][0] if update_data["images"] else None

    if update_data:
        update_data["updated_at"] = datetime.utcnow()
        await app.mongodb.products.update_one({"_id": product["_id"]}, {"$set": update_data})
        logger.info("Product updated", extra={"product_id": product_id, "user_id": admin["sub"]})

    updated_product = await app.mongodb.products.find_one({"_id": product["_id"]})
    return SuccessResponse(data=to_product_response(updated_product), message="Product updated successfully")

@app.delete("/products/{product_id}", response_model=SuccessResponse[dict])
async def delete_product(product_id: str, admin: dict = Depends(require_admin)):
    product = await app.mongodb.products.find_one({"_id": str_to_oid(product_id)})
    if not product:
        raise NotFoundException("Product not found")

    # Soft delete: historical order items keep pointing at the row
    await app.mongodb.products.update_one(
        {"_id": product["_id"]},
        {"$set": {"is_active": False, "updated_at": datetime.utcnow()}}
    )
    logger.info("Product deleted", extra={"product_id": product_id, "user_id": admin["sub"]})
    return SuccessResponse(data={"id": product_id}, message="Product deleted successfully")

@app.post("/products/{product_id}/images", response_model=SuccessResponse[ImageUploadResponse])
async def upload_product_images(
    product_id: str,
    files: List[UploadFile] = File(...),
    admin: dict = Depends(require_admin)
):
    product = await get_active_product(product_id)

    urls = []
    for upload in files:
        content = await upload.read()
        urls.append(save_product_image(product_id, upload.filename or "", content))

    images = [url for url in (product.get("images") or []) if isinstance(url, str)] + urls
    current = primary_image(product)
    image = current if current and current != "placeholder" else images[0]

    await app.mongodb.products.update_one(
        {"_id": product["_id"]},
        {"$set": {"images": images, "image": image, "updated_at": datetime.utcnow()}}
    )
    return SuccessResponse(
        data=ImageUploadResponse(product_id=product_id, urls=urls, images=images),
        message="Images uploaded successfully"
    )

# Stock
@app.post("/rpc/decrement_stock", response_model=SuccessResponse[StockResponse])
async def decrement_stock_rpc(body: StockDecrement, admin: dict = Depends(require_admin)):
    product_oid = str_to_oid(body.product_id)
    product = await decrement_stock(app.mongodb, product_oid, body.quantity)
    if not product:
        available = await available_stock(app.mongodb, product_oid)
        raise AppException(
            status.HTTP_409_CONFLICT,
            {"error": "insufficient_stock", "message": "Insufficient stock", "available": available}
        )
    return SuccessResponse(data=StockResponse(product_id=body.product_id, stock=product["stock"]))

# Settings
@app.get("/settings/shipping", response_model=SuccessResponse[ShippingConfig])
async def get_shipping_settings():
    config = await load_shipping_config(app.mongodb)
    return SuccessResponse(data=ShippingConfig(**config))

@app.put("/settings/shipping", response_model=SuccessResponse[ShippingConfig])
async def update_shipping_settings(config: ShippingConfig, admin: dict = Depends(require_admin)):
    await app.mongodb.settings.update_one(
        {"key": SHIPPING_CONFIG_KEY},
        {"$set": {"value": {
            "free_shipping_threshold": float(config.free_shipping_threshold),
            "shipping_cost": float(config.shipping_cost),
        }}},
        upsert=True
    )
    logger.info("Shipping settings updated", extra={"user_id": admin["sub"]})
    return SuccessResponse(data=config, message="Settings updated successfully")

# Favorites
@app.get("/favorites", response_model=SuccessResponse[List[ProductResponse]])
async def list_favorites(user: dict = Depends(get_current_user)):
    return SuccessResponse(data=await favorite_products(user["sub"]))

@app.post("/favorites", response_model=SuccessResponse[List[ProductResponse]])
async def add_favorite(favorite: FavoriteCreate, user: dict = Depends(get_current_user)):
    await get_active_product(favorite.product_id)
    fav_db = FavoriteDB(user_id=user["sub"], product_id=favorite.product_id)
    await app.mongodb.favorites.update_one(
        {"user_id": fav_db.user_id, "product_id": fav_db.product_id},
        {"$setOnInsert": fav_db.dict()},
        upsert=True
    )
    return SuccessResponse(data=await favorite_products(user["sub"]))

@app.delete("/favorites/{product_id}", response_model=SuccessResponse[List[ProductResponse]])
async def remove_favorite(product_id: str, user: dict = Depends(get_current_user)):
    await app.mongodb.favorites.delete_one({"user_id": user["sub"], "product_id": product_id})
    return SuccessResponse(data=await favorite_products(user["sub"]))

@app.post("/favorites/sync", response_model=SuccessResponse[List[ProductResponse]])
async def sync_favorites(sync: FavoriteSync, user: dict = Depends(get_current_user)):
    """Merge a guest's local favorites into the stored list; stored rows win."""
    user_id = user["sub"]
    for product_id in dict.fromkeys(sync.product_ids):
        try:
            await get_active_product(product_id)
        except NotFoundException:
            logger.warning(f"Skipping unknown favorite {product_id}", extra={"user_id": user_id})
            continue
        fav_db = FavoriteDB(user_id=user_id, product_id=product_id)
        await app.mongodb.favorites.update_one(
            {"user_id": user_id, "product_id": product_id},
            {"$setOnInsert": fav_db.dict()},
            upsert=True
        )
    return SuccessResponse(data=await favorite_products(user_id))

# Reviews
@app.get("/products/{product_id}/reviews", response_model=SuccessResponse[List[ReviewResponse]])
async def list_reviews(product_id: str):
    product = await get_active_product(product_id)
    cursor = app.mongodb.reviews.find({"product_id": str(product["_id"])}).sort("created_at", -1)
    reviews = []
    async for doc in cursor:
        doc["id"] = str(doc.pop("_id"))
        reviews.append(ReviewResponse(**doc))
    return SuccessResponse(data=reviews)

@app.post("/products/{product_id}/reviews", response_model=SuccessResponse[ReviewResponse])
async def add_review(product_id: str, review: ReviewCreate, user: dict = Depends(get_current_user)):
    product = await get_active_product(product_id)
    review_db = ReviewDB(product_id=str(product["_id"]), user_id=user["sub"], **review.dict())

    # One review per shopper and product; a new one replaces the old
    await app.mongodb.reviews.update_one(
        {"product_id": review_db.product_id, "user_id": review_db.user_id},
        {"$set": review_db.dict(by_alias=True, exclude={"id"})},
        upsert=True
    )
    await refresh_review_stats(product["_id"])

    stored = await app.mongodb.reviews.find_one({"product_id": review_db.product_id, "user_id": review_db.user_id})
    stored["id"] = str(stored.pop("_id"))
    return SuccessResponse(data=ReviewResponse(**stored), message="Review saved")

@app.get("/health", response_model=HealthResponse)
async def health_check():
    db_status = "unhealthy"
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    if db_status != "connected":
        logger.error(f"Health Check Failed: DB={db_status}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service Unhealthy: DB={db_status}"
        )

    return HealthResponse(
        service="catalog-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status
    )
