"""Shared helpers for services and blueprints.

ensure_utc:      normalise datetimes to aware UTC before querying
parse_datetime:  ISO-8601 / YYYY-MM-DD input → aware UTC datetime (None on bad input)
client_ip:       X-Forwarded-For → X-Real-IP → 0.0.0.0
client_info:     ip / user agent / session id of the current request
as_identifier:   numeric ids → str before lookups and writes
"""
import logging
from datetime import UTC, date, datetime

from flask import request

logger = logging.getLogger(__name__)

UNKNOWN_IP = "0.0.0.0"


def ensure_utc(value):
    """Return *value* as an aware UTC datetime; naive input is taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_datetime(value):
    """Parse an ISO-8601 date or datetime string.

    Returns None for empty/invalid input. A trailing ``Z`` is accepted and a
    bare date becomes midnight UTC.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        logger.debug("Unparseable datetime %r", value)
        return None


def client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.headers.get("X-Real-IP") or UNKNOWN_IP


def client_info() -> dict:
    return {
        "ip_address": client_ip(),
        "user_agent": request.headers.get("User-Agent"),
        "session_id": request.headers.get("X-Session-ID"),
    }


def as_identifier(value):
    """JSON clients send ids as numbers or strings; identifier columns hold strings."""
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return value
