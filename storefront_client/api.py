"""
Async HTTP client for the storefront services.

Every call unwraps the `{success, data, message}` envelope and raises
`ApiError` with the server's `detail` on a non-2xx answer.
"""
import os
import time
import logging
from typing import Any, Optional, List

import httpx

logger = logging.getLogger(__name__)

# Configuration
AUTH_SERVICE_URL = os.getenv("AUTH_SERVICE_URL", "http://localhost:8001")
CATALOG_SERVICE_URL = os.getenv("CATALOG_SERVICE_URL", "http://localhost:8002")
ORDERS_SERVICE_URL = os.getenv("ORDERS_SERVICE_URL", "http://localhost:8003")
REQUEST_TIMEOUT = float(os.getenv("STOREFRONT_REQUEST_TIMEOUT", "10"))


class ApiError(Exception):
    def __init__(self, status_code: int, detail: Any):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{status_code}: {detail}")


class ServiceUnavailable(ApiError):
    def __init__(self, target: str, reason: str):
        super().__init__(503, f"{target} unavailable: {reason}")


class StorefrontApi:
    def __init__(
        self,
        auth_url: str = AUTH_SERVICE_URL,
        catalog_url: str = CATALOG_SERVICE_URL,
        orders_url: str = ORDERS_SERVICE_URL,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.auth_url = auth_url.rstrip("/")
        self.catalog_url = catalog_url.rstrip("/")
        self.orders_url = orders_url.rstrip("/")
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    def _headers(self) -> dict:
        if self.access_token:
            return {"Authorization": f"Bearer {self.access_token}"}
        return {}

    async def request(self, method: str, base_url: str, path: str, **kwargs) -> Any:
        url = f"{base_url}{path}"
        start_time = time.time()
        try:
            resp = await self._client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.RequestError as e:
            logger.warning(f"Call to {url} failed", extra={"target": base_url, "path": path, "method": method})
            raise ServiceUnavailable(base_url, str(e)) from e

        logger.debug("Downstream Call Completed", extra={
            "target": base_url,
            "path": path,
            "method": method,
            "status_code": resp.status_code,
            "duration_ms": round((time.time() - start_time) * 1000, 2)
        })

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.is_error:
            detail = body.get("detail") if isinstance(body, dict) else resp.text
            raise ApiError(resp.status_code, detail)
        if isinstance(body, dict) and "success" in body:
            return body.get("data")
        return body

    # --- Auth ---
    async def register(self, email: str, password: str, full_name: str, phone: Optional[str] = None) -> dict:
        payload = {"email": email, "password": password, "full_name": full_name}
        if phone:
            payload["phone"] = phone
        return await self.request("POST", self.auth_url, "/register", json=payload)

    async def login(self, email: str, password: str) -> dict:
        tokens = await self.request("POST", self.auth_url, "/login", json={"email": email, "password": password})
        self.access_token = tokens["access_token"]
        self.refresh_token = tokens["refresh_token"]
        return tokens

    async def refresh(self) -> dict:
        tokens = await self.request("POST", self.auth_url, "/refresh", json={"refresh_token": self.refresh_token})
        self.access_token = tokens["access_token"]
        self.refresh_token = tokens["refresh_token"]
        return tokens

    async def logout(self):
        try:
            await self.request("POST", self.auth_url, "/logout", json={"refresh_token": self.refresh_token})
        finally:
            self.access_token = None
            self.refresh_token = None

    async def get_user_role(self) -> Any:
        data = await self.request("POST", self.auth_url, "/rpc/get_user_role")
        return data.get("role") if isinstance(data, dict) else data

    async def get_profile(self) -> dict:
        return await self.request("GET", self.auth_url, "/profile")

    # --- Catalog ---
    async def list_products(self, **filters) -> dict:
        params = {k: v for k, v in filters.items() if v is not None}
        return await self.request("GET", self.catalog_url, "/products", params=params)

    async def get_product(self, product_id: str) -> dict:
        return await self.request("GET", self.catalog_url, f"/products/{product_id}")

    async def shipping_settings(self) -> dict:
        return await self.request("GET", self.catalog_url, "/settings/shipping")

    async def list_favorites(self) -> List[dict]:
        return await self.request("GET", self.catalog_url, "/favorites")

    async def add_favorite(self, product_id: str) -> List[dict]:
        return await self.request("POST", self.catalog_url, "/favorites", json={"product_id": product_id})

    async def remove_favorite(self, product_id: str) -> List[dict]:
        return await self.request("DELETE", self.catalog_url, f"/favorites/{product_id}")

    async def sync_favorites(self, product_ids: List[str]) -> List[dict]:
        return await self.request("POST", self.catalog_url, "/favorites/sync", json={"product_ids": product_ids})

    # --- Orders ---
    async def get_address(self) -> dict:
        return await self.request("GET", self.orders_url, "/addresses/me")

    async def save_address(self, address: dict) -> dict:
        return await self.request("PUT", self.orders_url, "/addresses/me", json=address)

    async def checkout(self, payload: dict) -> dict:
        return await self.request("POST", self.orders_url, "/checkout", json=payload)

    async def list_orders(self) -> List[dict]:
        return await self.request("GET", self.orders_url, "/orders")

    async def get_order(self, order_id: str) -> dict:
        return await self.request("GET", self.orders_url, f"/orders/{order_id}")
