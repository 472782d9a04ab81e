"""
Directory reference tables.

Models:
    - User: portal account referenced by audit rows and counted as a seat.
    - ExternalService: registered KKKS data connector, counted against the
      license connector limit.

Audit tables reference users by plain string id (no FK) so that a removed
account never invalidates the historical trail.
"""

import uuid
from datetime import UTC, datetime

from migas_audit.models import db


def _uuid() -> str:
    return str(uuid.uuid4())


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(64), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False, unique=True)
    role = db.Column(db.String(50), nullable=False, default="viewer")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))

    def summary(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email, "role": self.role}

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


class ExternalService(db.Model):
    __tablename__ = "external_services"

    id = db.Column(db.String(64), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    service_type = db.Column(
        db.String(50), nullable=False, default="connector",
        comment="connector | broker | registry",
    )
    status = db.Column(db.String(20), nullable=False, default="active")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))

    def __repr__(self):
        return f"<ExternalService {self.id}: {self.name}>"


def user_summaries(user_ids) -> dict:
    """Return ``{user_id: summary}`` for the ids that exist."""
    ids = {uid for uid in user_ids if uid}
    if not ids:
        return {}
    rows = User.query.filter(User.id.in_(ids)).all()
    return {u.id: u.summary() for u in rows}
