from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field

from shared.utils import ROLE_CUSTOMER

class AuthUserDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    email: EmailStr
    password_hash: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class UserDB(BaseModel):
    """Profile row in `users`, keyed by the auth user's id."""
    id: str = Field(..., alias="_id")
    email: EmailStr
    full_name: str = ""
    phone: Optional[str] = None
    role: str = ROLE_CUSTOMER
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True
