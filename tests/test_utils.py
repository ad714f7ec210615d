from datetime import date
from decimal import Decimal

import pytest

from rent_settle.config import Settings
from rent_settle.errors import InvalidInput
from rent_settle.utils import (
    add_months,
    iter_months,
    month_label,
    months_between,
    parse_year_month,
    round_cents,
    to_decimal,
    validate_period,
)


def test_parse_year_month():
    assert parse_year_month("2024-03") == date(2024, 3, 1)
    assert parse_year_month("2024-03-17") == date(2024, 3, 1)
    for bad in ("2024", "2024-13", "march"):
        with pytest.raises(InvalidInput):
            parse_year_month(bad)


def test_month_arithmetic():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert months_between(date(2024, 1, 1), date(2024, 4, 1)) == 3
    assert list(iter_months(date(2024, 11, 1), date(2025, 1, 1))) == [(11, 2024), (12, 2024), (1, 2025)]
    assert month_label(1, 2024) == "January 2024"


def test_validate_period_bounds():
    validate_period(1, 1900)
    validate_period(12, 2200)
    for month, year in ((0, 2024), (13, 2024), (1, 1899), (1, 2201)):
        with pytest.raises(InvalidInput):
            validate_period(month, year)


def test_decimal_helpers():
    assert to_decimal(0.1) == Decimal("0.1")
    assert round_cents(Decimal("2.345")) == Decimal("2.35")
    for bad in (True, "nan", "inf", "12abc"):
        with pytest.raises(InvalidInput):
            to_decimal(bad)


def test_settings_from_env():
    settings = Settings.from_env(
        {
            "RENT_SETTLE_DATABASE_URL": "sqlite://",
            "RENT_SETTLE_VAT_RATE": "10",
            "RENT_SETTLE_EARLIEST_PERIOD": "2023-01",
            "RENT_SETTLE_SESSION_TIMEOUT_MINUTES": "5",
            "RENT_SETTLE_AGENCY_NAME": "Finques Girona",
            "RENT_SETTLE_LOG_LEVEL": "debug",
        }
    )
    assert settings.database_url == "sqlite://"
    assert settings.vat_rate == Decimal("10")
    assert settings.earliest_period == date(2023, 1, 1)
    assert settings.session_timeout_minutes == 5
    assert settings.agency.name == "Finques Girona"
    assert settings.log_level == "DEBUG"


def test_settings_defaults():
    settings = Settings.from_env({})
    assert settings.vat_rate == Decimal("21")
    assert settings.earliest_period is None
    assert settings.username == "admin"
