"""Tests for the price catalog and language normalisation."""

from __future__ import annotations

import pytest
from billing_core.pricing import BillingPeriod, Currency, PriceCatalog, PricingError, Tier, normalize_lang


@pytest.fixture()
def catalog() -> PriceCatalog:
    return PriceCatalog.from_mapping(
        {
            "starter_monthly_usd": "price_sm_usd",
            "starter_yearly_eur": "price_sy_eur",
            "pro_monthly_usd": "",
            "unrelated": "price_x",
        }
    )


class TestPriceCatalog:
    def test_resolves_configured_price(self, catalog: PriceCatalog) -> None:
        assert catalog.resolve(Tier.STARTER, BillingPeriod.MONTHLY, Currency.USD) == "price_sm_usd"
        assert catalog.resolve(Tier.STARTER, BillingPeriod.YEARLY, Currency.EUR) == "price_sy_eur"

    def test_empty_price_is_not_configured(self, catalog: PriceCatalog) -> None:
        with pytest.raises(PricingError):
            catalog.resolve(Tier.PRO, BillingPeriod.MONTHLY, Currency.USD)

    def test_missing_combination(self, catalog: PriceCatalog) -> None:
        with pytest.raises(PricingError, match="pro/yearly/EUR"):
            catalog.resolve(Tier.PRO, BillingPeriod.YEARLY, Currency.EUR)

    def test_unknown_keys_ignored(self, catalog: PriceCatalog) -> None:
        assert len(catalog.prices) == 2


class TestNormalizeLang:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("en", "en"), ("CS", "cs"), ("cz", "cs"), ("de", "de"), ("fr", "en"), ("", "en"), (None, "en")],
    )
    def test_normalize(self, raw: str | None, expected: str) -> None:
        assert normalize_lang(raw) == expected
