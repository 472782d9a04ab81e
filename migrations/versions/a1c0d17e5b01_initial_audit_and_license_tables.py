"""initial_audit_and_license_tables

Directory tables (users, external_services), the three hash-chained audit
tables, licenses and license_usage_logs.

Revision ID: a1c0d17e5b01
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1c0d17e5b01"
down_revision = None
branch_labels = None
depends_on = None


def _chain_columns():
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("chain_position", sa.Integer(), nullable=False, unique=True),
        sa.Column("previous_hash", sa.String(length=64), nullable=True),
        sa.Column("integrity_hash", sa.String(length=64), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    # ── Directory ────────────────────────────────────────────────────────
    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("role", sa.String(length=50), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    if "external_services" not in existing_tables:
        op.create_table(
            "external_services",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("service_type", sa.String(length=50), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    # ── Compliance audit ─────────────────────────────────────────────────
    if "compliance_audit_logs" not in existing_tables:
        op.create_table(
            "compliance_audit_logs",
            *_chain_columns(),
            sa.Column("event_type", sa.String(length=40), nullable=False),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("entity_type", sa.String(length=50), nullable=False),
            sa.Column("entity_id", sa.String(length=64), nullable=True),
            sa.Column("user_id", sa.String(length=64), nullable=True),
            sa.Column("session_id", sa.String(length=128), nullable=True),
            sa.Column("ip_address", sa.String(length=45), nullable=True),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            sa.Column("resource_id", sa.String(length=64), nullable=True),
            sa.Column("contract_id", sa.String(length=64), nullable=True),
            sa.Column("file_name", sa.String(length=500), nullable=True),
            sa.Column("file_size", sa.BigInteger(), nullable=True),
            sa.Column("file_hash", sa.String(length=128), nullable=True),
            sa.Column("previous_state", sa.JSON(), nullable=True),
            sa.Column("current_state", sa.JSON(), nullable=True),
            sa.Column("change_reason", sa.Text(), nullable=True),
            sa.Column("security_level", sa.String(length=20), nullable=False),
            sa.Column("data_classification", sa.String(length=20), nullable=False),
            sa.Column("risk_score", sa.Integer(), nullable=True),
            sa.Column("compliance_flags", sa.JSON(), nullable=False),
            sa.Column("error_details", sa.JSON(), nullable=True),
            sa.Column("event_metadata", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_compliance_audit_logs_integrity_hash", "compliance_audit_logs", ["integrity_hash"])
        op.create_index("ix_compliance_audit_logs_timestamp", "compliance_audit_logs", ["timestamp"])
        op.create_index("idx_compliance_entity", "compliance_audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_compliance_user", "compliance_audit_logs", ["user_id"])
        op.create_index("idx_compliance_event", "compliance_audit_logs", ["event_type"])
        op.create_index("idx_compliance_security", "compliance_audit_logs", ["security_level"])

    # ── Resource upload audit ────────────────────────────────────────────
    if "resource_upload_audit_logs" not in existing_tables:
        op.create_table(
            "resource_upload_audit_logs",
            *_chain_columns(),
            sa.Column("upload_id", sa.String(length=36), nullable=False),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("resource_id", sa.String(length=64), nullable=False),
            sa.Column("original_file_name", sa.String(length=500), nullable=False),
            sa.Column("uploaded_file_name", sa.String(length=520), nullable=False),
            sa.Column("file_size", sa.BigInteger(), nullable=False),
            sa.Column("file_type", sa.String(length=50), nullable=False),
            sa.Column("mime_type", sa.String(length=120), nullable=True),
            sa.Column("file_hash", sa.String(length=128), nullable=False),
            sa.Column("virus_scan_status", sa.String(length=20), nullable=False),
            sa.Column("encryption_status", sa.String(length=20), nullable=False),
            sa.Column("upload_status", sa.String(length=20), nullable=False),
            sa.Column("upload_progress", sa.Integer(), nullable=False),
            sa.Column("upload_start_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("upload_end_time", sa.DateTime(timezone=True), nullable=True),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("ip_address", sa.String(length=45), nullable=False),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            sa.Column("validation_status", sa.String(length=20), nullable=False),
            sa.Column("validation_errors", sa.JSON(), nullable=True),
            sa.Column("compliance_checks", sa.JSON(), nullable=False),
            sa.Column("status_reason", sa.Text(), nullable=True),
            sa.Column("data_classification", sa.String(length=20), nullable=False),
            sa.Column("business_justification", sa.Text(), nullable=True),
            sa.Column("project_code", sa.String(length=64), nullable=True),
            sa.Column("contract_id", sa.String(length=64), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("upload_id", "sequence", name="uq_upload_sequence"),
        )
        op.create_index("ix_resource_upload_audit_logs_integrity_hash", "resource_upload_audit_logs", ["integrity_hash"])
        op.create_index("ix_resource_upload_audit_logs_timestamp", "resource_upload_audit_logs", ["timestamp"])
        op.create_index("ix_resource_upload_audit_logs_upload_id", "resource_upload_audit_logs", ["upload_id"])
        op.create_index("idx_upload_resource", "resource_upload_audit_logs", ["resource_id"])
        op.create_index("idx_upload_user", "resource_upload_audit_logs", ["user_id"])
        op.create_index("idx_upload_status", "resource_upload_audit_logs", ["upload_status"])

    # ── Request action audit ─────────────────────────────────────────────
    if "request_action_audit_logs" not in existing_tables:
        op.create_table(
            "request_action_audit_logs",
            *_chain_columns(),
            sa.Column("request_id", sa.String(length=64), nullable=False),
            sa.Column("action_type", sa.String(length=20), nullable=False),
            sa.Column("action_status", sa.String(length=20), nullable=False),
            sa.Column("performed_by_user_id", sa.String(length=64), nullable=False),
            sa.Column("authorized_by_user_id", sa.String(length=64), nullable=True),
            sa.Column("delegate_user_id", sa.String(length=64), nullable=True),
            sa.Column("previous_status", sa.String(length=20), nullable=True),
            sa.Column("new_status", sa.String(length=20), nullable=False),
            sa.Column("status_reason", sa.Text(), nullable=True),
            sa.Column("approval_level", sa.Integer(), nullable=False),
            sa.Column("required_approvals", sa.Integer(), nullable=False),
            sa.Column("current_approvals", sa.Integer(), nullable=False),
            sa.Column("data_requested", sa.JSON(), nullable=True),
            sa.Column("access_granted", sa.JSON(), nullable=True),
            sa.Column("access_conditions", sa.JSON(), nullable=True),
            sa.Column("data_delivery_method", sa.String(length=50), nullable=True),
            sa.Column("security_clearance", sa.String(length=20), nullable=False),
            sa.Column("compliance_notes", sa.Text(), nullable=True),
            sa.Column("risk_assessment", sa.JSON(), nullable=False),
            sa.Column("business_justification", sa.Text(), nullable=True),
            sa.Column("project_code", sa.String(length=64), nullable=True),
            sa.Column("contract_id", sa.String(length=64), nullable=True),
            sa.Column("cost_center", sa.String(length=64), nullable=True),
            sa.Column("ip_address", sa.String(length=45), nullable=False),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            sa.Column("session_id", sa.String(length=128), nullable=True),
            sa.Column("request_metadata", sa.JSON(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_request_action_audit_logs_integrity_hash", "request_action_audit_logs", ["integrity_hash"])
        op.create_index("ix_request_action_audit_logs_timestamp", "request_action_audit_logs", ["timestamp"])
        op.create_index("idx_request_action_request", "request_action_audit_logs", ["request_id"])
        op.create_index("idx_request_action_performer", "request_action_audit_logs", ["performed_by_user_id"])
        op.create_index("idx_request_action_type", "request_action_audit_logs", ["action_type"])

    # ── Licensing ────────────────────────────────────────────────────────
    if "licenses" not in existing_tables:
        op.create_table(
            "licenses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("license_token", sa.String(length=32), nullable=False),
            sa.Column("license_hash", sa.String(length=64), nullable=False),
            sa.Column("license_name", sa.String(length=200), nullable=False),
            sa.Column("license_type", sa.String(length=20), nullable=False),
            sa.Column("license_level", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="INACTIVE"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("issued_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("activation_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("expiration_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("organization_name", sa.String(length=200), nullable=False),
            sa.Column("organization_id", sa.String(length=64), nullable=True),
            sa.Column("contact_email", sa.String(length=200), nullable=False),
            sa.Column("max_users", sa.Integer(), nullable=True),
            sa.Column("max_connectors", sa.Integer(), nullable=True),
            sa.Column("max_data_volume", sa.BigInteger(), nullable=True),
            sa.Column("max_api_requests", sa.Integer(), nullable=True),
            sa.Column("enabled_features", sa.JSON(), nullable=False),
            sa.Column("restricted_features", sa.JSON(), nullable=False),
            sa.Column("activation_key", sa.String(length=32), nullable=False),
            sa.Column("client_fingerprint", sa.String(length=500), nullable=True),
            sa.Column("last_used", sa.DateTime(timezone=True), nullable=True),
            sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("license_metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_licenses_license_token", "licenses", ["license_token"], unique=True)
        op.create_index("ix_licenses_status", "licenses", ["status"])

    if "license_usage_logs" not in existing_tables:
        op.create_table(
            "license_usage_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("license_id", sa.Integer(), nullable=False),
            sa.Column("feature_used", sa.String(length=100), nullable=False),
            sa.Column("usage_type", sa.String(length=20), nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=True),
            sa.Column("session_id", sa.String(length=128), nullable=True),
            sa.Column("ip_address", sa.String(length=45), nullable=True),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            sa.Column("data_processed", sa.BigInteger(), nullable=True),
            sa.Column("api_calls", sa.Integer(), nullable=True),
            sa.Column("processing_time", sa.Integer(), nullable=True),
            sa.Column("usage_status", sa.String(length=20), nullable=False, server_default="SUCCESS"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["license_id"], ["licenses.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_usage_license_time", "license_usage_logs", ["license_id", "timestamp"])


def downgrade():
    op.drop_index("idx_usage_license_time", table_name="license_usage_logs")
    op.drop_table("license_usage_logs")
    op.drop_index("ix_licenses_status", table_name="licenses")
    op.drop_index("ix_licenses_license_token", table_name="licenses")
    op.drop_table("licenses")
    op.drop_table("request_action_audit_logs")
    op.drop_table("resource_upload_audit_logs")
    op.drop_table("compliance_audit_logs")
    op.drop_table("external_services")
    op.drop_table("users")
