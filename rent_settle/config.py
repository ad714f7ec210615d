"""Runtime settings read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Mapping, Optional

from .utils import decimal_from_str, parse_year_month

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class Agency:
    """Details of the managing agency printed on receipts and certificates."""

    name: str = "Your Agency Ltd."
    address: str = "123 Main Street, 08001 Barcelona"
    tax_id: str = "B12345678"
    phone: str = "+34 93 123 45 67"
    email: str = "info@youragency.com"


@dataclass
class Settings:
    database_url: str = "sqlite:///rent_settle.sqlite3"
    vat_rate: Decimal = Decimal("21")
    earliest_period: Optional[date] = None
    secret_key: str = "dev-secret-key"
    username: str = "admin"
    password: str = "admin"
    session_timeout_minutes: int = 30
    log_level: str = "INFO"
    agency: Agency = field(default_factory=Agency)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        earliest = env.get("RENT_SETTLE_EARLIEST_PERIOD", "").strip()
        defaults = Agency()
        return cls(
            database_url=env.get("RENT_SETTLE_DATABASE_URL", "sqlite:///rent_settle.sqlite3"),
            vat_rate=decimal_from_str(env.get("RENT_SETTLE_VAT_RATE", "21")),
            earliest_period=parse_year_month(earliest) if earliest else None,
            secret_key=env.get("RENT_SETTLE_SECRET_KEY", "dev-secret-key"),
            username=env.get("RENT_SETTLE_USER", "admin"),
            password=env.get("RENT_SETTLE_PASSWORD", "admin"),
            session_timeout_minutes=int(env.get("RENT_SETTLE_SESSION_TIMEOUT_MINUTES", "30")),
            log_level=env.get("RENT_SETTLE_LOG_LEVEL", "INFO").upper(),
            agency=Agency(
                name=env.get("RENT_SETTLE_AGENCY_NAME", defaults.name),
                address=env.get("RENT_SETTLE_AGENCY_ADDRESS", defaults.address),
                tax_id=env.get("RENT_SETTLE_AGENCY_TAX_ID", defaults.tax_id),
                phone=env.get("RENT_SETTLE_AGENCY_PHONE", defaults.phone),
                email=env.get("RENT_SETTLE_AGENCY_EMAIL", defaults.email),
            ),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
