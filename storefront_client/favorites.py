import logging
from typing import List

from storefront_client.api import ApiError
from storefront_client.local_storage import LocalStorage
from storefront_client.session import Session

logger = logging.getLogger(__name__)

GUEST_FAVORITES_KEY = "guest_favorites"


class Favorites:
    """
    Favorite products of the current shopper.

    Guests keep their favorites in local storage. Once a session exists the
    server list is authoritative; `reconcile()` runs on every sign-in and
    merges the guest set into it.
    """

    def __init__(self, storage: LocalStorage, session: Session):
        self.storage = storage
        self.session = session
        self.products: List[dict] = list(storage.get(GUEST_FAVORITES_KEY, []))
        session.on_sign_in.append(self.reconcile)

    def _save_guest(self):
        self.storage.set(GUEST_FAVORITES_KEY, self.products)

    def _queue_for_sync(self, product: dict):
        pending = self.storage.get(GUEST_FAVORITES_KEY, [])
        if not any(p["id"] == product["id"] for p in pending):
            self.storage.set(GUEST_FAVORITES_KEY, pending + [product])

    def is_favorite(self, product_id: str) -> bool:
        return any(p["id"] == product_id for p in self.products)

    @property
    def count(self) -> int:
        return len(self.products)

    async def reconcile(self) -> List[dict]:
        """Push guest favorites to the server and adopt the merged list."""
        guest = self.storage.get(GUEST_FAVORITES_KEY, [])
        try:
            if guest:
                self.products = await self.session.api.sync_favorites([p["id"] for p in guest])
                self.storage.remove(GUEST_FAVORITES_KEY)
            else:
                self.products = await self.session.api.list_favorites()
        except ApiError:
            # Guest store is kept for the next attempt
            logger.warning("Favorites sync failed", exc_info=True)
            self.products = list(guest)
        return self.products

    async def add(self, product: dict):
        if self.session.is_authenticated:
            try:
                self.products = await self.session.api.add_favorite(product["id"])
                return
            except ApiError:
                logger.warning("Remote favorite add failed, queued for the next sync", exc_info=True)
                self._queue_for_sync(product)
        if not self.is_favorite(product["id"]):
            self.products.append(product)
        if not self.session.is_authenticated:
            self._save_guest()

    async def remove(self, product_id: str):
        if self.session.is_authenticated:
            try:
                self.products = await self.session.api.remove_favorite(product_id)
            except ApiError:
                logger.warning("Remote favorite removal failed", exc_info=True)
            return
        self.products = [p for p in self.products if p["id"] != product_id]
        self._save_guest()

    async def toggle(self, product: dict):
        if self.is_favorite(product["id"]):
            await self.remove(product["id"])
        else:
            await self.add(product)
