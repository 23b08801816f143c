from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Generic, TypeVar, Any
import logging
import uuid

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException, status, Header, Depends, Request
from motor.motor_asyncio import AsyncIOMotorClient
from passlib.context import CryptContext
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"
ROLES = (ROLE_ADMIN, ROLE_CUSTOMER)

# --- Configuration ---
class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://localhost:27017"
    MONGO_DB: str = "storefront_db"
    SECRET_KEY: str = "secret"
    REFRESH_SECRET_KEY: str = "refresh_secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    RATE_LIMIT_ENABLED: bool = True

    # Product image storage
    MEDIA_ROOT: str = "media"
    PUBLIC_BASE_URL: str = "http://localhost:8002"

    # Store defaults, overridden by the `settings` collection
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("100")
    SHIPPING_COST: Decimal = Decimal("5")
    SHIPPING_REGION: str = "Lima"
    LOW_STOCK_THRESHOLD: int = 5

    class Config:
        env_file = ".env"

settings = Settings()

# --- Database ---
def get_db_client(url: str = settings.MONGO_URL) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url)

def get_database(client: AsyncIOMotorClient):
    # All services share one database
    return client[settings.MONGO_DB]

def str_to_oid(id: str) -> ObjectId:
    try:
        return ObjectId(id)
    except (InvalidId, TypeError):
        raise NotFoundException("Invalid ID format")

def to_money(value: Any) -> Decimal:
    """Restore a Decimal from a stored float/str and round to cents."""
    return Decimal(str(value)).quantize(Decimal("0.01"))

# --- Authentication ---
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    if "jti" not in to_encode:
        to_encode.update({"jti": str(uuid.uuid4())})

    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def create_refresh_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    if "jti" not in to_encode:
        to_encode.update({"jti": str(uuid.uuid4())})

    to_encode.update({"exp": expire, "type": "refresh"})
    return jwt.encode(to_encode, settings.REFRESH_SECRET_KEY, algorithm=settings.ALGORITHM)

def verify_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise UnauthorizedException("Could not validate credentials")

def verify_refresh_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.REFRESH_SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise UnauthorizedException("Could not validate refresh token")
    if payload.get("type") != "refresh":
        raise UnauthorizedException("Could not validate refresh token")
    return payload

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None
    dependencies: Optional[dict] = None


# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: Any = "An error occurred",
        headers: Optional[dict] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class NotFoundException(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class UnauthorizedException(AppException):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(AppException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

# --- Roles ---
async def resolve_role(db, user_id: str) -> str:
    """
    Look up the role stored on the user's profile row.

    Fails open to the least privileged role: a lookup error, a missing row
    or an unknown value all resolve to ``customer``.
    """
    try:
        user = await db.users.find_one({"_id": user_id}, {"role": 1})
    except Exception:
        logger.warning("Role lookup failed, defaulting to customer", extra={"user_id": user_id}, exc_info=True)
        return ROLE_CUSTOMER
    if user and user.get("role") in ROLES:
        return user["role"]
    return ROLE_CUSTOMER

# --- Decorators/Dependencies ---
async def require_auth(authorization: Optional[str] = Header(None)) -> dict:
    if not authorization:
        raise UnauthorizedException("Missing authentication credentials")
    scheme, _, param = authorization.partition(" ")
    if scheme.lower() != "bearer" or not param:
        raise UnauthorizedException("Invalid authentication credentials")
    payload = verify_token(param)
    if payload.get("type") != "access":
        raise UnauthorizedException("Invalid authentication credentials")
    return payload

async def get_current_user(request: Request, payload: dict = Depends(require_auth)) -> dict:
    db = request.app.mongodb
    if "jti" in payload:
        is_revoked = await db.revoked_tokens.find_one({"jti": payload["jti"]})
        if is_revoked:
            raise UnauthorizedException("Token has been revoked")
    return payload

async def require_admin(request: Request, user: dict = Depends(get_current_user)) -> dict:
    role = await resolve_role(request.app.mongodb, user["sub"])
    if role != ROLE_ADMIN:
        raise ForbiddenException("Admin access required")
    return {**user, "role": role}
