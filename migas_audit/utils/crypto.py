"""
Crypto utilities — canonical JSON, SHA-256 integrity hashes, HMAC signing.

Canonical form:
  Integrity hashes must recompute identically after a row has been written
  to and read back from the database, on SQLite and PostgreSQL alike.
  ``canonicalize`` therefore normalises the values that drivers return in
  different shapes:

  - datetimes → UTC, tzinfo dropped, ISO-8601 with microseconds
    (SQLite hands back naive datetimes, PostgreSQL aware ones)
  - dates → ISO-8601
  - Decimal / UUID / anything else non-JSON → ``str()``

  Keys are sorted lexicographically, separators are compact and the result
  is UTF-8 encoded without ASCII escaping.

License secrets:
  ``hmac_sha256_hex`` keys license hashes with LICENSE_SECRET.  Rotate it
  only together with a re-issue of all licenses.
"""

import hashlib
import hmac
import json
from datetime import UTC, date, datetime

# Fields that never take part in an integrity hash.
VOLATILE_FIELDS = frozenset({"id", "timestamp", "created_at", "integrity_hash"})


def _normalise(value):
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value.isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _normalise(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_normalise(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def canonicalize(payload: dict) -> bytes:
    """Serialise *payload* to canonical JSON bytes."""
    text = json.dumps(
        _normalise(payload),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return text.encode("utf-8")


def sha256_hex(data: bytes | str) -> str:
    """SHA-256 hex digest of bytes or a UTF-8 string."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def compute_integrity_hash(payload: dict, exclude: frozenset = VOLATILE_FIELDS) -> str:
    """SHA-256 over the canonical form of *payload* minus volatile fields."""
    hashable = {k: v for k, v in payload.items() if k not in exclude}
    return sha256_hex(canonicalize(hashable))


def hmac_sha256_hex(secret: str, message: str) -> str:
    """HMAC-SHA256 hex digest keyed by *secret*."""
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def constant_time_equals(a: str | None, b: str | None) -> bool:
    """Compare two strings without leaking timing information."""
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
