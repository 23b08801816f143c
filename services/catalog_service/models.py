from datetime import datetime
from typing import Optional, List
from decimal import Decimal
import json
from pydantic import BaseModel, Field

BRANDS = ("Esika", "Unique", "Avon", "Natura", "Cyzone", "Yanbal")

class ProductDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    brand: str
    category_id: Optional[str] = None
    price: Decimal
    original_price: Optional[Decimal] = None
    description: str = ""
    image: Optional[str] = None
    images: List[str] = []
    rating: float = 5.0
    reviews: int = 0
    is_new: bool = False
    is_offer: bool = False
    stock: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

class FavoriteDB(BaseModel):
    user_id: str
    product_id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

class ReviewDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    product_id: str
    user_id: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True


def _first_from_json_list(value) -> Optional[str]:
    if isinstance(value, str) and value.strip().startswith("["):
        try:
            parsed = json.loads(value)
        except ValueError:
            return None
        if isinstance(parsed, list) and parsed:
            return parsed[0]
    return None

def primary_image(product: Optional[dict]) -> Optional[str]:
    """
    Pick the image to show for a product.

    Older rows carry a single `image` URL, newer ones an `images` list, and
    some imports stored either field as a JSON-encoded array string.
    """
    if not product:
        return None

    image = product.get("image")
    images = product.get("images")

    if isinstance(image, str) and (image.startswith("http") or image.startswith("/")):
        return image
    if isinstance(images, list) and images:
        return images[0]

    return _first_from_json_list(images) or _first_from_json_list(image) or image or None
