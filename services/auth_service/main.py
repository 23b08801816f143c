from fastapi import FastAPI, Depends, HTTPException, status, Request
from fastapi.middleware.cors import CORSMiddleware
from datetime import timedelta, datetime

from shared.utils import (
    get_db_client, get_database, settings, get_password_hash, verify_password,
    create_access_token, create_refresh_token, verify_refresh_token,
    get_current_user, resolve_role, SuccessResponse, HealthResponse,
    UnauthorizedException, NotFoundException, ROLE_CUSTOMER
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from services.auth_service.schemas import (
    UserRegister, UserLogin, Token, RefreshTokenRequest,
    ProfileUpdate, ProfileResponse, RoleResponse
)
from services.auth_service.models import AuthUserDB, UserDB

# Setup Logging
logger = setup_logging("auth-service")

app = FastAPI(title="Auth Service")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware, service_name="auth-service")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = get_database(app.mongodb_client)
    await app.mongodb.auth_users.create_index("email", unique=True)
    await app.mongodb.users.create_index("email")
    # TTL index drops revoked tokens once they would have expired anyway
    await app.mongodb.revoked_tokens.create_index("exp", expireAfterSeconds=0)

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

# --- Helpers ---
def issue_tokens(user_id: str, email: str) -> Token:
    claims = {"sub": user_id, "email": email}
    access_token = create_access_token(
        data=claims,
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    refresh_token = create_refresh_token(data=claims)
    return Token(access_token=access_token, refresh_token=refresh_token, token_type="bearer")

async def revoke(payload: dict):
    if "jti" in payload:
        await app.mongodb.revoked_tokens.update_one(
            {"jti": payload["jti"]},
            {"$set": {"jti": payload["jti"], "exp": datetime.utcfromtimestamp(payload["exp"])}},
            upsert=True
        )

# --- Endpoints ---

@app.post("/register", response_model=SuccessResponse[ProfileResponse])
async def register(user: UserRegister):
    existing_user = await app.mongodb.auth_users.find_one({"email": user.email})
    if existing_user:
        raise HTTPException(status_code=400, detail="Email already registered")

    auth_user = AuthUserDB(email=user.email, password_hash=get_password_hash(user.password))
    new_user = await app.mongodb.auth_users.insert_one(auth_user.dict(by_alias=True, exclude={"id"}))
    user_id = str(new_user.inserted_id)

    profile = UserDB(_id=user_id, email=user.email, full_name=user.full_name, phone=user.phone)
    await app.mongodb.users.update_one(
        {"_id": user_id},
        {"$setOnInsert": profile.dict(by_alias=True, exclude={"id"})},
        upsert=True
    )
    logger.info("User registered", extra={"user_id": user_id})

    return SuccessResponse(
        data=ProfileResponse(**profile.dict()),
        message="User registered successfully"
    )

@app.post("/login", response_model=SuccessResponse[Token])
@limiter.limit("5/minute")
async def login(user_credentials: UserLogin, request: Request):
    user = await app.mongodb.auth_users.find_one({"email": user_credentials.email})
    if not user or not verify_password(user_credentials.password, user["password_hash"]):
        raise UnauthorizedException("Incorrect email or password")

    return SuccessResponse(data=issue_tokens(str(user["_id"]), user["email"]))

@app.get("/verify", response_model=SuccessResponse[dict])
async def verify(payload: dict = Depends(get_current_user)):
    return SuccessResponse(data=payload, message="Token is valid")

@app.post("/refresh", response_model=SuccessResponse[Token])
async def refresh_token(request: RefreshTokenRequest):
    payload = verify_refresh_token(request.refresh_token)
    if "jti" in payload:
        is_revoked = await app.mongodb.revoked_tokens.find_one({"jti": payload["jti"]})
        if is_revoked:
            raise UnauthorizedException("Refresh token has been revoked")

    # Rotate: the presented refresh token cannot be used twice
    await revoke(payload)
    return SuccessResponse(data=issue_tokens(payload["sub"], payload.get("email", "")))

@app.post("/logout", response_model=SuccessResponse[dict])
async def logout(request: RefreshTokenRequest, payload: dict = Depends(get_current_user)):
    await revoke(payload)
    await revoke(verify_refresh_token(request.refresh_token))
    logger.info("User signed out", extra={"user_id": payload["sub"]})
    return SuccessResponse(message="Logged out successfully")

@app.get("/profile", response_model=SuccessResponse[ProfileResponse])
async def get_profile(payload: dict = Depends(get_current_user)):
    profile = await app.mongodb.users.find_one({"_id": payload["sub"]})
    if not profile:
        raise NotFoundException("Profile not found")
    profile["id"] = profile.pop("_id")
    return SuccessResponse(data=ProfileResponse(**profile))

@app.put("/profile", response_model=SuccessResponse[ProfileResponse])
async def update_profile(profile_update: ProfileUpdate, payload: dict = Depends(get_current_user)):
    user_id = payload["sub"]
    update_data = {k: v for k, v in profile_update.dict().items() if v is not None}

    on_insert = {
        "email": payload.get("email", ""),
        "role": ROLE_CUSTOMER,
        "created_at": datetime.utcnow(),
    }
    if "full_name" not in update_data:
        on_insert["full_name"] = ""
    update_doc = {"$setOnInsert": on_insert}
    if update_data:
        update_doc["$set"] = update_data

    await app.mongodb.users.update_one({"_id": user_id}, update_doc, upsert=True)

    profile = await app.mongodb.users.find_one({"_id": user_id})
    profile["id"] = profile.pop("_id")
    return SuccessResponse(data=ProfileResponse(**profile), message="Profile updated successfully")

@app.post("/rpc/get_user_role", response_model=SuccessResponse[RoleResponse])
async def get_user_role(payload: dict = Depends(get_current_user)):
    role = await resolve_role(app.mongodb, payload["sub"])
    return SuccessResponse(data=RoleResponse(role=role))

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
        service="auth-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status
    )
