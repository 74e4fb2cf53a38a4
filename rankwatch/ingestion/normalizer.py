"""
Ingestion Normalizer

Turns a raw rank-check result into a canonical Observation, or rejects it
with ValidationError before it can reach the store.

Accepted input: a dict using either camelCase (`checkedAt`, `locationCode`,
`keywordId`) or snake_case keys, or a pydantic model with those fields.
"""

import logging
import math
import re
from datetime import date, datetime
from typing import Any, Mapping, Optional
from uuid import UUID

from rankwatch.errors import ValidationError
from rankwatch.models import Observation, RankSource
from rankwatch.utils.config import get_settings
from rankwatch.utils.dates import as_datetime, to_naive_utc, utcnow
from rankwatch.utils.domain import normalize_domain

logger = logging.getLogger(__name__)

# Provider marker for "not indexed"
NOT_INDEXED_MARKERS = {"ni", "n/a", "-", "none", "null"}

# Deepest tracked position; anything beyond is "not in top 100"
MAX_TRACKED_RANK = 100

VALID_SOURCES = {s.value for s in RankSource}

_WHITESPACE_RE = re.compile(r"\s+")


def _pick(raw: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in raw and raw[name] is not None:
            return raw[name]
    return None


# =============================================================================
# FIELD NORMALIZERS
# =============================================================================

def normalize_rank(value: Any) -> Optional[int]:
    """
    Normalize a rank to a positive integer or None (not in top N).

    Never rounds: 4.5 is not a rank. Booleans are not ranks either.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, int):
        return value if 0 < value <= MAX_TRACKED_RANK else None

    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return normalize_rank(int(value))
        return None

    if isinstance(value, str):
        text = value.strip()
        if not text or text.lower() in NOT_INDEXED_MARKERS:
            return None
        try:
            return normalize_rank(int(text))
        except ValueError:
            pass
        try:
            return normalize_rank(float(text))
        except ValueError:
            return None

    return None


def normalize_keyword(value: Any) -> str:
    """Trim and collapse internal whitespace; case is preserved."""
    if value is None:
        return ""
    return _WHITESPACE_RE.sub(" ", str(value)).strip()


def parse_checked_at(value: Any, now: Optional[datetime] = None) -> datetime:
    """
    Parse a check timestamp to naive UTC.

    Missing values default to `now`.

    Raises:
        ValidationError: if the value cannot be parsed
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return now or utcnow()

    if isinstance(value, datetime):
        return to_naive_utc(value)

    if isinstance(value, date):
        return as_datetime(value)

    if isinstance(value, str):
        text = value.strip()
        # fromisoformat() only accepts "Z" from Python 3.11 on
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return to_naive_utc(datetime.fromisoformat(text))
        except ValueError:
            raise ValidationError(f"Unparseable checkedAt: {value!r}", field="checkedAt", value=value)

    raise ValidationError(f"Unsupported checkedAt type: {type(value).__name__}", field="checkedAt", value=value)


def _parse_uuid(value: Any, field: str) -> Optional[UUID]:
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value!r}", field=field, value=value)


def _parse_optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _parse_optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_source(value: Any, default: Optional[str] = None) -> str:
    """Lowercase provenance tag; rejects anything outside RankSource."""
    source = str(value).strip().lower() if value else (default or get_settings().RANK_API_PROVIDER)
    if source not in VALID_SOURCES:
        raise ValidationError(
            f"Unknown source {source!r} (expected one of {sorted(VALID_SOURCES)})",
            field="source",
            value=value,
        )
    return source


# =============================================================================
# OBSERVATION
# =============================================================================

def normalize_observation(
    raw: Any,
    now: Optional[datetime] = None,
    default_source: Optional[str] = None,
) -> Observation:
    """
    Validate and clean one raw rank check.

    Args:
        raw: dict (camelCase or snake_case keys) or pydantic model
        now: Ingestion time used when checkedAt is missing
        default_source: Source used when the raw check has none

    Returns:
        Observation

    Raises:
        ValidationError: empty domain or keyword, bad checkedAt,
                         unknown source, malformed client/keyword id
    """
    if hasattr(raw, "model_dump"):
        raw = raw.model_dump(by_alias=True)
    if not isinstance(raw, Mapping):
        raise ValidationError(f"Rank check must be a mapping, got {type(raw).__name__}")

    domain = normalize_domain(_pick(raw, "domain"))
    if not domain:
        raise ValidationError("Domain is required", field="domain", value=raw.get("domain"))

    keyword = normalize_keyword(_pick(raw, "keyword"))
    if not keyword:
        raise ValidationError("Keyword is required", field="keyword", value=raw.get("keyword"))

    observation = Observation(
        domain=domain,
        keyword=keyword,
        rank=normalize_rank(_pick(raw, "rank")),
        checked_at=parse_checked_at(_pick(raw, "checkedAt", "checked_at"), now=now),
        source=normalize_source(_pick(raw, "source"), default=default_source),
        location=_pick(raw, "location"),
        location_code=_parse_optional_int(_pick(raw, "locationCode", "location_code")),
        difficulty=_parse_optional_float(_pick(raw, "difficulty")),
        client_id=_parse_uuid(_pick(raw, "client", "client_id", "clientId"), "client"),
        keyword_id=_parse_uuid(_pick(raw, "keywordId", "keyword_id"), "keywordId"),
    )

    logger.debug(
        f"Normalized '{observation.keyword}' on {observation.domain}: "
        f"rank={observation.rank} at {observation.checked_at.isoformat()}"
    )
    return observation
