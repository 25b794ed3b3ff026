"""Subscription price catalog.

Maps a (tier, billing period, currency) choice from the pricing page to
the Stripe price id configured for it.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class PricingError(ValueError):
    """Raised when a tier/period/currency combination has no price."""


class Tier(str, Enum):
    """Paid tiers that can be purchased through Checkout."""

    STARTER = "starter"
    PRO = "pro"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"


class PriceCatalog(BaseModel):
    """Stripe price ids keyed by tier, period and currency.

    Attributes
    ----------
    prices:
        ``{(tier, period, currency): price_id}``.  Empty price ids are
        treated as not configured.
    """

    prices: dict[tuple[Tier, BillingPeriod, Currency], str] = Field(default_factory=dict)

    def resolve(self, tier: Tier, period: BillingPeriod, currency: Currency) -> str:
        """Return the price id for the combination or raise :class:`PricingError`."""
        price_id = self.prices.get((tier, period, currency), "").strip()
        if not price_id:
            raise PricingError(f"No price configured for {tier.value}/{period.value}/{currency.value}")
        return price_id

    @classmethod
    def from_mapping(cls, mapping: dict[str, str]) -> PriceCatalog:
        """Build a catalog from flat ``<tier>_<period>_<currency>`` keys.

        Keys are case-insensitive, e.g. ``starter_monthly_usd``.  Unknown
        keys are ignored.
        """
        prices: dict[tuple[Tier, BillingPeriod, Currency], str] = {}
        for tier in Tier:
            for period in BillingPeriod:
                for currency in Currency:
                    key = f"{tier.value}_{period.value}_{currency.value}".lower()
                    price_id = mapping.get(key, "")
                    if price_id:
                        prices[(tier, period, currency)] = price_id
        return cls(prices=prices)


_SUPPORTED_LANGS = frozenset({"en", "cs", "de"})


def normalize_lang(value: str | None) -> str:
    """Return a supported UI language code, defaulting to ``en``.

    ``cz`` is accepted as an alias for Czech.
    """
    lang = (value or "").strip().lower()
    if lang == "cz":
        lang = "cs"
    return lang if lang in _SUPPORTED_LANGS else "en"
