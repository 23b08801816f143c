from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime
from shared.security_config import password_problems, sanitize_input, normalize_phone

class UserRegister(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None

    @field_validator('password')
    def password_complexity(cls, v):
        problems = password_problems(v)
        if problems:
            raise ValueError("Password needs " + ", ".join(problems))
        return v

    @field_validator('full_name')
    def sanitize_name(cls, v):
        return sanitize_input(v)

    @field_validator('phone')
    def normalize_phone_number(cls, v):
        return normalize_phone(v) if v else v

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str

class RefreshTokenRequest(BaseModel):
    refresh_token: str

class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None

    @field_validator('full_name')
    def sanitize_name(cls, v):
        return sanitize_input(v)

    @field_validator('phone')
    def normalize_phone_number(cls, v):
        return normalize_phone(v)

class ProfileResponse(BaseModel):
    id: str
    email: EmailStr
    full_name: str
    phone: Optional[str] = None
    role: str
    created_at: datetime

class RoleResponse(BaseModel):
    role: str
