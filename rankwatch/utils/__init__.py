"""Utility modules for the Rankwatch engine."""

from .config import Settings, get_settings
from .domain import normalize_domain, domain_matches
from .dates import (
    utcnow,
    month_key,
    month_name,
    parse_month_key,
    is_closed_period,
    iter_periods,
)

__all__ = [
    "Settings",
    "get_settings",
    # Domains
    "normalize_domain",
    "domain_matches",
    # Calendar
    "utcnow",
    "month_key",
    "month_name",
    "parse_month_key",
    "is_closed_period",
    "iter_periods",
]
