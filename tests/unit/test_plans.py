"""Unit tests for the plan catalog and price book."""

from decimal import Decimal

import pytest

from planguard.billing.plans import (
    UNLIMITED,
    PriceBook,
    features_for,
    get_plan,
    is_downgrade,
    is_upgrade,
    limits_for,
    list_plans,
    rank,
    within_limit,
)
from planguard.exceptions import ConfigurationError
from planguard.types import BillingInterval, PlanTier, Resource


@pytest.mark.unit
class TestPlanCatalog:
    def test_plans_are_ordered_by_rank(self) -> None:
        assert [p.id for p in list_plans()] == ["starter", "pro", "team", "agency"]
        assert rank("starter") < rank("pro") < rank("team") < rank("agency")

    def test_starter_limits(self) -> None:
        limits = limits_for(PlanTier.STARTER)
        assert limits.max_users == 1
        assert limits.max_projects == 5
        assert limits.max_clients == 10
        assert limits.max_storage_gb == 1

    def test_agency_is_unlimited_except_storage(self) -> None:
        limits = limits_for("agency")
        assert limits.for_resource(Resource.USERS) == UNLIMITED
        assert limits.for_resource("projects") == UNLIMITED
        assert limits.max_storage_gb == 500

    def test_team_features(self) -> None:
        features = features_for("team")
        assert features.team_collaboration is True
        assert features.api_access is True
        assert features.white_label is False
        assert features.sla is False

    def test_pro_only_unlocks_advanced_reporting(self) -> None:
        enabled = {k for k, v in features_for("pro").as_dict().items() if v}
        assert enabled == {"advanced_reporting"}

    def test_prices(self) -> None:
        assert get_plan("pro").price_for(BillingInterval.MONTH) == Decimal("39")
        assert get_plan("agency").price_for("year") == Decimal("1490")

    def test_unknown_plan_raises_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            get_plan("enterprise")

    def test_upgrade_and_downgrade(self) -> None:
        assert is_upgrade("starter", "team")
        assert not is_upgrade("team", "team")
        assert is_downgrade("agency", "pro")
        assert not is_downgrade("pro", "agency")

    def test_unlimited_fits_any_value(self) -> None:
        assert within_limit(UNLIMITED, 10**9)
        assert within_limit(5, 5)
        assert not within_limit(5, 6)


@pytest.mark.unit
class TestPriceBook:
    def test_default_ids(self) -> None:
        book = PriceBook.default()
        assert book.price_id("pro", "month") == "price_pro_monthly"
        assert book.price_id(PlanTier.TEAM, BillingInterval.YEAR) == "price_team_yearly"

    def test_lookup_round_trip(self) -> None:
        book = PriceBook({"team_year": "price_abc"})
        assert book.lookup("price_abc") == (PlanTier.TEAM, BillingInterval.YEAR)
        assert book.lookup("price_unknown") is None
        assert book.lookup(None) is None

    def test_missing_price_raises(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            PriceBook({}).price_id("pro", "month")
        assert exc_info.value.details["price_key"] == "pro_month"
