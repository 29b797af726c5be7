"""
Rate-limit header parsing.

Vendors report quotas under different header names and encode reset times
differently ("10s", "1m", "6m0.5s", ISO timestamps, bare seconds). This
module normalizes all of them into RateLimitInfo. Absent or malformed
values resolve to -1 (unknown); parsing never raises.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional

from modelgate.exceptions import ConfigurationError
from modelgate.llm.types import UNKNOWN, RateLimitInfo, Vendor

logger = logging.getLogger(__name__)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_MS = {"h": 3_600_000, "m": 60_000, "s": 1_000, "ms": 1}

# (limit, remaining, reset) header names for requests and tokens
_ANTHROPIC_HEADERS = (
    ("anthropic-ratelimit-requests-limit",
     "anthropic-ratelimit-requests-remaining",
     "anthropic-ratelimit-requests-reset"),
    ("anthropic-ratelimit-tokens-limit",
     "anthropic-ratelimit-tokens-remaining",
     "anthropic-ratelimit-tokens-reset"),
)

_OPENAI_HEADERS = (
    ("x-ratelimit-limit-requests",
     "x-ratelimit-remaining-requests",
     "x-ratelimit-reset-requests"),
    ("x-ratelimit-limit-tokens",
     "x-ratelimit-remaining-tokens",
     "x-ratelimit-reset-tokens"),
)


def _parse_duration(value: str) -> Optional[int]:
    """'1m30s' -> 90000. None unless the whole string is duration parts."""
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            return None
        total += float(match.group(1)) * _UNIT_MS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(value):
        return None
    return int(round(total))


def _parse_timestamp(value: str, now: float) -> Optional[int]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    remaining = parsed.timestamp() - now
    return int(remaining * 1000) if remaining > 0 else 0


def parse_reset_time(value: Optional[str], now: Optional[float] = None) -> int:
    """
    Convert a reset header value to milliseconds until reset.

    Args:
        value: "10s", "1m", "1m30s", "250ms", an ISO-8601 timestamp, or a
               bare number of seconds.
        now: Current epoch seconds (for timestamps); defaults to time.time().

    Returns:
        Milliseconds until reset, 0 if a timestamp is already past,
        -1 if absent or unparseable.
    """
    if value is None:
        return UNKNOWN
    value = str(value).strip()
    if not value:
        return UNKNOWN

    if value.isdigit():
        return int(value) * 1000

    duration = _parse_duration(value)
    if duration is not None:
        return duration

    timestamp = _parse_timestamp(value, time.time() if now is None else now)
    if timestamp is not None:
        return timestamp

    try:
        seconds = float(value)
        return int(seconds * 1000) if seconds >= 0 else UNKNOWN
    except (ValueError, OverflowError):
        return UNKNOWN


def _parse_int(value: Optional[str]) -> int:
    if value is None:
        return UNKNOWN
    try:
        return int(str(value).strip())
    except ValueError:
        return UNKNOWN


def normalize_headers(headers: Any) -> dict[str, str]:
    """Lower-case header mapping from a dict, httpx.Headers, or None."""
    if headers is None:
        return {}
    try:
        items = headers.items()
    except AttributeError:
        return {}
    return {str(k).lower(): str(v) for k, v in items}


def parse_retry_after(headers: Any, now: Optional[float] = None) -> Optional[int]:
    """
    Milliseconds from `retry-after-ms` or `retry-after` (seconds or HTTP date).

    Returns None when neither header is usable.
    """
    normalized = normalize_headers(headers)

    retry_ms = normalized.get("retry-after-ms")
    if retry_ms is not None:
        try:
            return max(int(float(retry_ms)), 0)
        except ValueError:
            pass

    retry_after = normalized.get("retry-after")
    if retry_after is None:
        return None
    try:
        return max(int(float(retry_after) * 1000), 0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(retry_after)
    except (TypeError, ValueError):
        return None
    current = time.time() if now is None else now
    return max(int((when.timestamp() - current) * 1000), 0)


def _parse_groups(
    groups: tuple[tuple[str, str, str], tuple[str, str, str]],
    headers: Mapping[str, str],
    now: Optional[float],
) -> RateLimitInfo:
    (req_limit, req_remaining, req_reset), (tok_limit, tok_remaining, tok_reset) = groups
    return RateLimitInfo(
        requests_limit=_parse_int(headers.get(req_limit)),
        requests_remaining=_parse_int(headers.get(req_remaining)),
        requests_reset_ms=parse_reset_time(headers.get(req_reset), now),
        tokens_limit=_parse_int(headers.get(tok_limit)),
        tokens_remaining=_parse_int(headers.get(tok_remaining)),
        tokens_reset_ms=parse_reset_time(headers.get(tok_reset), now),
    )


def parse_rate_limit_headers(
    vendor: Vendor | str,
    headers: Any,
    now: Optional[float] = None,
) -> RateLimitInfo:
    """
    Parse a vendor's rate-limit headers into RateLimitInfo.

    Unknown vendors and missing headers yield all -1 values.
    """
    normalized = normalize_headers(headers)
    try:
        vendor = Vendor.parse(vendor)
    except ConfigurationError:
        return RateLimitInfo.unknown()

    if vendor is Vendor.ANTHROPIC:
        return _parse_groups(_ANTHROPIC_HEADERS, normalized, now)

    if vendor in (Vendor.OPENAI, Vendor.GROQ):
        return _parse_groups(_OPENAI_HEADERS, normalized, now)

    if vendor is Vendor.AZURE_OPENAI:
        # Azure frequently reports -1 or omits resets; retry-after fills in
        info = _parse_groups(_OPENAI_HEADERS, normalized, now)
        retry_after_ms = parse_retry_after(normalized, now)
        if retry_after_ms is not None:
            if info.requests_reset_ms == UNKNOWN:
                info.requests_reset_ms = retry_after_ms
            if info.tokens_reset_ms == UNKNOWN:
                info.tokens_reset_ms = retry_after_ms
        return info

    return RateLimitInfo.unknown()
