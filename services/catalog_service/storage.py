import logging
import secrets
from pathlib import Path

from shared.utils import settings, AppException

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "webp", "gif"}
MEDIA_URL_PREFIX = "/media"


def media_root() -> Path:
    return Path(settings.MEDIA_ROOT)


def object_key(product_id: str, filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if ext not in ALLOWED_EXTENSIONS:
        raise AppException(detail=f"Unsupported image type: '{ext or filename}'")
    return f"products/{product_id}/{secrets.token_hex(8)}.{ext}"


def public_url(key: str) -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}{MEDIA_URL_PREFIX}/{key}"


def save_product_image(product_id: str, filename: str, content: bytes) -> str:
    """Write an uploaded image into the media bucket and return its public URL."""
    key = object_key(product_id, filename)
    path = media_root() / key
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    logger.info(f"Stored image {key} ({len(content)} bytes)", extra={"product_id": product_id})
    return public_url(key)
