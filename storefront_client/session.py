import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional
from urllib.parse import urlencode

from storefront_client.api import ApiError, StorefrontApi

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"

LOGIN_PATH = "/login"
HOME_PATH = "/"

# Paths that need a signed-in shopper; admin paths also need the admin role
PROTECTED_PATHS = ("/checkout", "/orders", "/profile", "/address")
ADMIN_PATHS = ("/admin",)


def fail_open_role(value) -> str:
    """Anything but an explicit admin answer is a customer."""
    return ROLE_ADMIN if value == ROLE_ADMIN else ROLE_CUSTOMER


def _matches(path: str, prefixes) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in prefixes)


@dataclass
class AccessDecision:
    allowed: bool
    redirect_to: Optional[str] = None


class Session:
    def __init__(self, api: StorefrontApi):
        self.api = api
        self.user: Optional[dict] = None
        self.role: Optional[str] = None
        # Awaited once the identity and role are known, e.g. favorites reconciliation
        self.on_sign_in: List[Callable[[], Awaitable]] = []

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.role == ROLE_ADMIN

    async def sign_in(self, email: str, password: str) -> dict:
        await self.api.login(email, password)
        try:
            self.user = await self.api.get_profile()
        except ApiError:
            logger.warning("Profile fetch failed after sign-in", exc_info=True)
            self.user = {"email": email}
        self.role = await self.resolve_role()
        for hook in self.on_sign_in:
            await hook()
        logger.info(f"Signed in as {email}", extra={"user_id": self.user.get("id")})
        return self.user

    async def sign_out(self):
        try:
            await self.api.logout()
        except ApiError:
            logger.warning("Logout call failed, clearing local session anyway", exc_info=True)
        self.user = None
        self.role = None

    async def resolve_role(self) -> str:
        try:
            value = await self.api.get_user_role()
        except ApiError:
            logger.warning("Role lookup failed, defaulting to customer", exc_info=True)
            return ROLE_CUSTOMER
        return fail_open_role(value)

    def check_access(self, path: str) -> AccessDecision:
        return access_decision(path, self.is_authenticated, self.role)


def access_decision(path: str, authenticated: bool, role: Optional[str]) -> AccessDecision:
    needs_admin = _matches(path, ADMIN_PATHS)
    if not (needs_admin or _matches(path, PROTECTED_PATHS)):
        return AccessDecision(allowed=True)
    if not authenticated:
        # Keep the origin so sign-in can return the shopper to it
        return AccessDecision(allowed=False, redirect_to=f"{LOGIN_PATH}?{urlencode({'from': path})}")
    if needs_admin and role != ROLE_ADMIN:
        return AccessDecision(allowed=False, redirect_to=HOME_PATH)
    return AccessDecision(allowed=True)
