from fastapi import Request, FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from typing import List
import re
import html

from shared.utils import settings

# --- Rate Limiting ---
# Switched off in tests and local scripts through RATE_LIMIT_ENABLED
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

def setup_rate_limiting(app: FastAPI):
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Security Headers Middleware ---
SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    # Product images may live on the catalog's /media mount or an external CDN
    "Content-Security-Policy": "default-src 'self'; img-src 'self' https: data:; object-src 'none'; frame-ancestors 'none';",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        return response

# --- Input Sanitization ---
def sanitize_input(text: str) -> str:
    """
    Sanitize input string:
    - HTML escape
    - Strip whitespace
    """
    if not isinstance(text, str):
        return text
    return html.escape(text.strip())

PASSWORD_RULES = (
    (r".{8,}", "at least 8 characters"),
    (r"[A-Z]", "an uppercase letter"),
    (r"[a-z]", "a lowercase letter"),
    (r"\d", "a digit"),
)

def password_problems(password: str) -> List[str]:
    """Return the password rules `password` does not meet (empty when strong)."""
    return [label for pattern, label in PASSWORD_RULES if not re.search(pattern, password)]

# --- Phone numbers ---
PHONE_PREFIX = "+51"

def normalize_phone(phone: str) -> str:
    """Store phones as ``+51 <digits>`` whatever the shopper typed."""
    if not isinstance(phone, str):
        return phone
    digits = re.sub(r"\D", "", phone.strip())
    if not digits:
        return ""
    if phone.strip().startswith(PHONE_PREFIX) and digits.startswith("51"):
        digits = digits[2:]
    return f"{PHONE_PREFIX} {digits}"
