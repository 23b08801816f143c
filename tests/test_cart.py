"""Tests for the client-local cart and its shipping config provider."""
from decimal import Decimal

import pytest

from storefront_client.api import ApiError, ServiceUnavailable
from storefront_client.cart import Cart, ShippingConfigProvider, UNKNOWN_STOCK_LIMIT
from storefront_client.local_storage import LocalStorage

LABIAL = {"id": "p-labial", "name": "Labial Mate", "brand": "Esika", "price": "35.90", "stock": 3}
PERFUME = {"id": "p-perfume", "name": "Perfume Floral", "brand": "Yanbal", "price": 120.0, "stock": 10}
SOMBRA = {"id": "p-sombra", "name": "Sombra", "brand": "Avon", "price": "12.50"}


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "storage.json"))


@pytest.fixture
def cart(storage):
    return Cart(storage)


class FakeSettingsApi:
    def __init__(self, answer=None, error=None):
        self.answer = answer
        self.error = error
        self.calls = 0

    async def shipping_settings(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.answer


class TestTotals:
    def test_example_cart(self, cart):
        cart.add(LABIAL, 2)
        assert cart.total == Decimal("71.80")
        assert cart.item_count == 2
        assert cart.shipping_cost == Decimal("5.00")
        assert cart.grand_total == Decimal("76.80")

    def test_empty_cart_ships_free(self, cart):
        assert cart.total == Decimal("0.00")
        assert cart.shipping_cost == Decimal("0.00")
        assert cart.grand_total == Decimal("0.00")

    def test_free_shipping_at_threshold(self, cart):
        cart.add({**PERFUME, "price": "100.00"})
        assert cart.shipping_cost == Decimal("0.00")
        assert cart.grand_total == cart.total

    @pytest.mark.parametrize("quantities", [(1, 1, 1), (3, 2, 7), (2, 10, 1)])
    def test_grand_total_is_total_plus_shipping(self, cart, quantities):
        for product, quantity in zip((LABIAL, PERFUME, SOMBRA), quantities):
            cart.add(product, quantity)
        assert cart.grand_total == cart.total + cart.shipping_cost
        if cart.total >= cart.free_shipping_threshold:
            assert cart.shipping_cost == 0


class TestQuantities:
    def test_adding_again_merges(self, cart):
        cart.add(PERFUME, 2)
        cart.add(PERFUME, 3)
        assert len(cart.items) == 1
        assert cart.items[0].quantity == 5

    def test_quantity_clamped_to_stock(self, cart):
        item = cart.add(LABIAL, 5)
        assert item.quantity == 3
        cart.add(LABIAL, 1)
        assert cart.items[0].quantity == 3

    def test_re_add_clamps_to_current_stock(self, cart):
        cart.add({**PERFUME, "stock": 5}, 1)
        item = cart.add({**PERFUME, "stock": 2}, 3)
        assert item.quantity == 2
        assert item.stock_snapshot == 2

        cart.update_quantity("p-perfume", 5)
        assert cart.items[0].quantity == 2

    def test_unknown_stock_clamps_at_limit(self, cart):
        cart.add(SOMBRA, 5000)
        assert cart.items[0].quantity == UNKNOWN_STOCK_LIMIT

    def test_out_of_stock_is_refused(self, cart):
        with pytest.raises(ValueError):
            cart.add({**LABIAL, "stock": 0})
        assert cart.is_empty

    def test_update_quantity(self, cart):
        cart.add(LABIAL, 1)
        cart.update_quantity("p-labial", 2)
        assert cart.items[0].quantity == 2
        cart.update_quantity("p-labial", 8)
        assert cart.items[0].quantity == 3

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_update_below_one_is_ignored(self, cart, quantity):
        cart.add(LABIAL, 2)
        cart.update_quantity("p-labial", quantity)
        assert cart.items[0].quantity == 2

    def test_remove_and_clear(self, cart):
        cart.add(LABIAL)
        cart.add(PERFUME)
        cart.remove("p-labial")
        assert [item.product_id for item in cart.items] == ["p-perfume"]
        cart.clear()
        assert cart.is_empty


class TestPersistence:
    def test_cart_survives_restart(self, storage, tmp_path):
        cart = Cart(storage)
        cart.add(LABIAL, 2)
        cart.add(SOMBRA)

        reloaded = Cart(LocalStorage(str(tmp_path / "storage.json")))
        assert [(i.product_id, i.quantity) for i in reloaded.items] == [("p-labial", 2), ("p-sombra", 1)]
        assert reloaded.items[0].unit_price == Decimal("35.90")
        assert reloaded.items[1].stock_snapshot is None
        assert reloaded.total == Decimal("84.30")

    def test_clear_is_persisted(self, storage, tmp_path):
        cart = Cart(storage)
        cart.add(LABIAL)
        cart.clear()
        assert Cart(LocalStorage(str(tmp_path / "storage.json"))).is_empty

    def test_failed_write_leaves_no_temp_file(self, tmp_path):
        storage = LocalStorage(str(tmp_path / "storage.json"))
        storage.set("cart", [])
        with pytest.raises(TypeError):
            storage.set("bad", object())
        assert sorted(p.name for p in tmp_path.iterdir()) == ["storage.json"]
        assert LocalStorage(str(tmp_path / "storage.json")).get("cart") == []

    def test_checkout_lines(self, cart):
        cart.add(LABIAL, 2)
        assert cart.checkout_lines() == [{
            "product_id": "p-labial",
            "name": "Labial Mate",
            "brand": "Esika",
            "unit_price": "35.90",
            "quantity": 2,
        }]


@pytest.mark.anyio
class TestShippingConfigProvider:
    async def test_refresh_applies_server_values(self, storage):
        provider = ShippingConfigProvider(FakeSettingsApi({"free_shipping_threshold": "50.00", "shipping_cost": "8.00"}))
        cart = Cart(storage, provider)
        cart.add(LABIAL, 1)
        assert cart.shipping_cost == Decimal("5.00")

        await provider.refresh()
        assert cart.shipping_cost == Decimal("8.00")
        cart.add(LABIAL, 1)
        assert cart.shipping_cost == Decimal("0.00")

    async def test_load_fetches_once(self):
        api = FakeSettingsApi({"free_shipping_threshold": "80", "shipping_cost": "6"})
        provider = ShippingConfigProvider(api)
        await provider.load()
        await provider.load()
        assert api.calls == 1
        await provider.refresh()
        assert api.calls == 2

    @pytest.mark.parametrize(
        "api",
        [
            FakeSettingsApi(error=ServiceUnavailable("http://catalog.test", "timeout")),
            FakeSettingsApi(error=ApiError(500, "boom")),
            FakeSettingsApi({"unexpected": True}),
        ],
    )
    async def test_failure_keeps_cached_values(self, api):
        provider = ShippingConfigProvider(api)
        await provider.refresh()
        assert provider.free_shipping_threshold == Decimal("100.00")
        assert provider.shipping_cost == Decimal("5.00")
        assert provider.loaded is False
