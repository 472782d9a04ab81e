"""
AuditRecord — abstract base class for tamper-evident audit tables.

All append-only audit models inherit from AuditRecord instead of db.Model
directly. This adds:
  - integer ``id`` (insertion order, also the hash-chain order)
  - ``chain_position`` (unique, predecessor + 1) so two writers can never
    link to the same predecessor
  - ``previous_hash`` / ``integrity_hash`` columns
  - ``timestamp`` (immutable, UTC)
  - ``FIELD_DEFAULTS`` applied at construction, so every hashed column holds
    its final value *before* the hash is taken
  - ``seal()`` to coerce, chain and hash a new row; ``append()`` to seal,
    insert and commit with a retry when the chain slot was taken
  - ORM guards that reject UPDATE and DELETE

The hash is computed over column-typed values: ``seal()`` first converts
every attribute to what its column returns on read (a JSON number posted
for a String column becomes ``"42"``, ``"1024"`` for a BigInteger becomes
``1024``, JSON columns go through a dumps/loads round trip).  Values that
cannot be converted raise ``ValidationError``.

Models register the guards with ``make_immutable(Model)`` right after the
class body.
"""

import json
import logging
from datetime import UTC, datetime

from sqlalchemy import event, inspect
from sqlalchemy import types as sa_types
from sqlalchemy.exc import IntegrityError

from migas_audit.core.exceptions import ConflictError, ImmutableRecordError, ValidationError
from migas_audit.models import db
from migas_audit.utils.crypto import VOLATILE_FIELDS, compute_integrity_hash

logger = logging.getLogger(__name__)

CHAIN_APPEND_ATTEMPTS = 5


def coerce_to_column(column_type, value):
    """Return *value* as the Python type *column_type* yields on read.

    Raises TypeError / ValueError when the value has no sensible conversion.
    """
    if value is None:
        return None
    if isinstance(column_type, sa_types.JSON):
        return json.loads(json.dumps(value))
    if isinstance(column_type, sa_types.Boolean):
        if isinstance(value, bool):
            return value
        raise TypeError("expected a boolean")
    if isinstance(column_type, sa_types.Integer):
        if isinstance(value, bool):
            raise TypeError("expected an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            return int(value.strip())
        raise TypeError("expected an integer")
    if isinstance(column_type, sa_types.DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        raise TypeError("expected a datetime")
    if isinstance(column_type, sa_types.String):
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)):
            return str(value)
        raise TypeError("expected a string")
    return value


class AuditRecord(db.Model):
    """Abstract base for hash-chained, append-only audit tables."""
    __abstract__ = True

    # Column name → scalar or zero-arg callable.
    FIELD_DEFAULTS: dict = {}

    id = db.Column(db.Integer, primary_key=True)
    chain_position = db.Column(
        db.Integer, nullable=False, unique=True,
        comment="1-based position in the hash chain; unique per table",
    )
    previous_hash = db.Column(
        db.String(64), nullable=True,
        comment="integrity_hash of the preceding row in the same table",
    )
    integrity_hash = db.Column(db.String(64), nullable=False, index=True)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False, index=True,
        default=lambda: datetime.now(UTC),
    )

    def __init__(self, **kwargs):
        for key, default in self.FIELD_DEFAULTS.items():
            if kwargs.get(key) is None:
                kwargs[key] = default() if callable(default) else default
        kwargs.setdefault("timestamp", datetime.now(UTC))
        super().__init__(**kwargs)

    # ── Hashing ──────────────────────────────────────────────────────────

    def coerce_column_values(self):
        """Convert attributes in place to their column-typed form."""
        errors = {}
        for attr in inspect(type(self)).column_attrs:
            column = attr.columns[0]
            value = getattr(self, attr.key)
            try:
                coerced = coerce_to_column(column.type, value)
            except (TypeError, ValueError) as exc:
                errors[attr.key] = str(exc) or "invalid value"
                continue
            if coerced is not value:
                setattr(self, attr.key, coerced)
        if errors:
            raise ValidationError(f"Invalid {type(self).__name__} values", details=errors)

    def hashable_payload(self) -> dict:
        """Column values that take part in the integrity hash."""
        mapper = inspect(type(self))
        return {
            attr.key: getattr(self, attr.key)
            for attr in mapper.column_attrs
            if attr.key not in VOLATILE_FIELDS
        }

    def compute_hash(self) -> str:
        return compute_integrity_hash(self.hashable_payload())

    def seal(self) -> "AuditRecord":
        """Coerce values, link to the latest row of this table and stamp the hash."""
        cls = type(self)
        head = (
            db.session.query(cls.integrity_hash, cls.chain_position)
            .order_by(cls.chain_position.desc())
            .limit(1)
            .first()
        )
        self.previous_hash = head.integrity_hash if head else None
        self.chain_position = head.chain_position + 1 if head else 1
        self.coerce_column_values()
        self.integrity_hash = self.compute_hash()
        return self

    def append(self) -> "AuditRecord":
        """Seal, insert and commit.

        A concurrent writer that linked to the same predecessor first makes
        the insert fail on ``chain_position``; the row is then re-sealed on
        the new head.  Any other integrity error propagates.
        """
        cls = type(self)
        for attempt in range(1, CHAIN_APPEND_ATTEMPTS + 1):
            self.seal()
            db.session.add(self)
            try:
                db.session.commit()
                return self
            except IntegrityError:
                db.session.rollback()
                position = self.chain_position
                taken = db.session.query(cls.id).filter(cls.chain_position == position).first()
                if taken is None:
                    raise
                logger.info(
                    "Chain slot %s of %s taken by a concurrent writer (attempt %d)",
                    position, cls.__tablename__, attempt,
                )
                # rolled-back INSERT keeps its primary key; let the next flush assign one
                self.id = None
        raise ConflictError(cls.__name__, "chain_position", str(self.chain_position))


# ── Immutability guards ──────────────────────────────────────────────────────

def _reject_update(mapper, connection, target):
    raise ImmutableRecordError(type(target).__name__, target.id, "update")


def _reject_delete(mapper, connection, target):
    raise ImmutableRecordError(type(target).__name__, target.id, "delete")


def make_immutable(model_cls):
    """Attach UPDATE/DELETE guards to an AuditRecord subclass."""
    event.listen(model_cls, "before_update", _reject_update)
    event.listen(model_cls, "before_delete", _reject_delete)
    return model_cls
