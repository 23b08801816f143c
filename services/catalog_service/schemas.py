from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from shared.security_config import sanitize_input
from services.catalog_service.models import BRANDS

BRAND_PATTERN = "^(" + "|".join(BRANDS) + ")$"

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    brand: str = Field(..., pattern=BRAND_PATTERN)
    category_id: Optional[str] = None
    price: Decimal = Field(..., gt=0)
    original_price: Optional[Decimal] = Field(None, gt=0)
    description: str = ""
    stock: int = Field(0, ge=0)
    is_new: bool = True
    is_offer: bool = False

    @field_validator('name', 'description', 'category_id')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ProductUpdate(BaseModel):
    name: Optional[str] = None
    brand: Optional[str] = Field(None, pattern=BRAND_PATTERN)
    category_id: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0)
    original_price: Optional[Decimal] = Field(None, gt=0)
    description: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    is_new: Optional[bool] = None
    is_offer: Optional[bool] = None
    images: Optional[List[str]] = None

    @field_validator('name', 'description', 'category_id')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ProductResponse(BaseModel):
    id: str
    name: str
    brand: str
    category_id: Optional[str] = None
    price: Decimal
    original_price: Optional[Decimal] = None
    description: str = ""
    image: Optional[str] = None
    images: List[str] = []
    primary_image: Optional[str] = None
    rating: float = 5.0
    reviews: int = 0
    is_new: bool = False
    is_offer: bool = False
    stock: int
    created_at: datetime
    updated_at: Optional[datetime] = None

class ProductListResponse(BaseModel):
    products: List[ProductResponse]
    total: int
    page: int
    limit: int

class ImageUploadResponse(BaseModel):
    product_id: str
    urls: List[str]
    images: List[str]

class StockDecrement(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)

class StockResponse(BaseModel):
    product_id: str
    stock: int

class ShippingConfig(BaseModel):
    free_shipping_threshold: Decimal = Field(..., ge=0)
    shipping_cost: Decimal = Field(..., ge=0)

class FavoriteCreate(BaseModel):
    product_id: str

class FavoriteSync(BaseModel):
    product_ids: List[str] = []

class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None

    @field_validator('comment')
    def sanitize_comment(cls, v):
        return sanitize_input(v)

class ReviewResponse(BaseModel):
    id: str
    product_id: str
    user_id: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime
