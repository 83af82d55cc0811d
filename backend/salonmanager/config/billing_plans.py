"""
Subscription plan catalog loader.

Loads plans from config/billing_plans.yml, the single source of truth
for plan keys, billing intervals and provider price IDs.

Usage:
    from salonmanager.config.billing_plans import get_plan_catalog

    catalog = get_plan_catalog()
    price = catalog.get_price("professional", "monthly")
    price.price_id  # -> "price_professional_monthly"
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

BILLING_INTERVALS = ("monthly", "yearly")


class PlanNotFoundError(KeyError):
    """Raised when a plan key or interval is not in the catalog."""


@dataclass(frozen=True)
class PlanPrice:
    """One purchasable (plan, interval) combination."""
    plan_key: str
    display_name: str
    interval: str
    amount: int
    currency: str
    price_id: str


class PlanCatalog:
    """Parsed plan catalog with lookup by plan key and interval."""

    def __init__(self, config_path: Optional[str] = None):
        self._config_path = config_path
        self._raw: Dict[str, Any] = {}
        self._prices: Dict[tuple, PlanPrice] = {}
        self.currency = "EUR"
        self.trial_days = 30
        self.default_plan: Optional[str] = None
        self._load()

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        candidates = [
            Path(os.getenv("BILLING_PLANS_PATH", "")) if os.getenv("BILLING_PLANS_PATH") else None,
            # From the repository root
            Path(__file__).parent.parent.parent.parent / "config" / "billing_plans.yml",
            Path(os.getcwd()) / "config" / "billing_plans.yml",
            Path(os.getcwd()) / ".." / "config" / "billing_plans.yml",
        ]

        for p in candidates:
            if p is None:
                continue
            resolved = p.resolve()
            if resolved.exists():
                return resolved

        raise FileNotFoundError(
            f"billing_plans.yml not found in: {[str(p) for p in candidates if p]}"
        )

    def _load(self) -> None:
        path = self._resolve_path()
        logger.info("Loading billing plan catalog from %s", path)

        with open(path, "r") as f:
            self._raw = yaml.safe_load(f) or {}

        self.currency = self._raw.get("currency", "EUR")
        self.trial_days = int(self._raw.get("trial_days", 30))
        self.default_plan = self._raw.get("default_plan")

        prices: Dict[tuple, PlanPrice] = {}
        for plan_key, plan_cfg in (self._raw.get("plans") or {}).items():
            for interval in BILLING_INTERVALS:
                interval_cfg = plan_cfg.get(interval)
                if not interval_cfg:
                    continue
                price_env = interval_cfg.get("price_env")
                price_id = (price_env and os.getenv(price_env)) or interval_cfg.get("price_id")
                if not price_id:
                    logger.warning("Plan interval has no price id", extra={
                        "plan_key": plan_key,
                        "interval": interval,
                    })
                    continue
                prices[(plan_key, interval)] = PlanPrice(
                    plan_key=plan_key,
                    display_name=plan_cfg.get("display_name", plan_key.title()),
                    interval=interval,
                    amount=int(interval_cfg.get("amount", 0)),
                    currency=self.currency,
                    price_id=price_id,
                )
        self._prices = prices

        logger.info("Loaded %d plan prices", len(self._prices))

    @property
    def plan_keys(self) -> List[str]:
        return sorted({key for key, _ in self._prices})

    def get_price(self, plan_key: str, interval: str = "monthly") -> PlanPrice:
        """
        Look up the price for a plan and billing interval.

        Raises:
            PlanNotFoundError: If the combination is not configured
        """
        price = self._prices.get((plan_key, interval))
        if price is None:
            raise PlanNotFoundError(f"Unknown plan '{plan_key}' ({interval})")
        return price

    def find_by_price_id(self, price_id: str) -> Optional[PlanPrice]:
        for price in self._prices.values():
            if price.price_id == price_id:
                return price
        return None

    def all_prices(self) -> List[PlanPrice]:
        return [self._prices[k] for k in sorted(self._prices)]


_catalog: Optional[PlanCatalog] = None
_catalog_lock = Lock()


def get_plan_catalog() -> PlanCatalog:
    """Get the process-wide plan catalog, loading it on first use."""
    global _catalog
    with _catalog_lock:
        if _catalog is None:
            _catalog = PlanCatalog()
        return _catalog
