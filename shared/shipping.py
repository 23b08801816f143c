import logging
from decimal import Decimal
from typing import Dict

from shared.utils import settings, to_money

logger = logging.getLogger(__name__)

SHIPPING_CONFIG_KEY = "shipping_config"


def default_shipping_config() -> Dict[str, Decimal]:
    return {
        "free_shipping_threshold": to_money(settings.FREE_SHIPPING_THRESHOLD),
        "shipping_cost": to_money(settings.SHIPPING_COST),
    }


async def load_shipping_config(db) -> Dict[str, Decimal]:
    """Read the shipping config row, falling back to the configured defaults."""
    config = default_shipping_config()
    doc = await db.settings.find_one({"key": SHIPPING_CONFIG_KEY})
    if doc and isinstance(doc.get("value"), dict):
        for field in config:
            if doc["value"].get(field) is not None:
                config[field] = to_money(doc["value"][field])
    return config


def shipping_cost_for(total: Decimal, config: Dict[str, Decimal]) -> Decimal:
    if total == 0 or total >= config["free_shipping_threshold"]:
        return Decimal("0.00")
    return to_money(config["shipping_cost"])
