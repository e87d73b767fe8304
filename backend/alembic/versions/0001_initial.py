"""initial schema

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

LEAD_STATUSES = (
    "submitted",
    "advocate_review",
    "qualified",
    "sent_to_consult",
    "approved",
    "ready_to_ship",
    "shipped",
    "delivered",
    "kit_returning",
    "collections",
    "kit_completed",
    "returned",
    "doesnt_qualify",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    op.create_table(
        "vendors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("parent_vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_vendors_code", "vendors", ["code"], unique=True)
    op.create_index("ix_vendors_parent_vendor_id", "vendors", ["parent_vendor_id"])

    op.create_table(
        "leads",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("mbi", sa.String(length=11), nullable=True),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("phone", sa.String(length=10), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("street", sa.String(length=200), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("state", sa.String(length=50), nullable=True),
        sa.Column("zip_code", sa.String(length=20), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*LEAD_STATUSES, name="lead_status"),
            nullable=False,
            server_default="submitted",
        ),
        sa.Column("test_type", sa.Enum("immune", "neuro", name="test_type"), nullable=False),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=False),
        sa.Column("vendor_code", sa.String(length=64), nullable=False),
        sa.Column("sub_vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=True),
        sa.Column("advocate_id", sa.String(length=64), nullable=True),
        sa.Column(
            "advocate_disposition",
            sa.Enum(
                "doesnt_qualify",
                "compliance_issue",
                "patient_declined",
                "call_back",
                "connected_to_compliance",
                "call_dropped",
                "dupe",
                name="advocate_disposition",
            ),
            nullable=True,
        ),
        sa.Column("advocate_notes", sa.Text(), nullable=True),
        sa.Column(
            "collections_disposition",
            sa.Enum("no_answer", "scheduled_callback", "kit_completed", name="collections_disposition"),
            nullable=True,
        ),
        sa.Column("collections_notes", sa.Text(), nullable=True),
        sa.Column(
            "doctor_approval_status",
            sa.Enum("pending", "approved", "declined", name="doctor_approval_status"),
            nullable=True,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_duplicate", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("has_active_alerts", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("advocate_reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consult_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("doctor_approval_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("kit_shipped_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("kit_delivered_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("kit_returned_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_tracking_update", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tracking_number", sa.String(length=64), nullable=True),
        sa.Column("inbound_tracking_number", sa.String(length=64), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_leads_mbi", "leads", ["mbi"])
    op.create_index("ix_leads_phone", "leads", ["phone"])
    op.create_index("ix_leads_status", "leads", ["status"])
    op.create_index("ix_leads_vendor_id", "leads", ["vendor_id"])
    op.create_index("ix_leads_tracking_number", "leads", ["tracking_number"])
    op.create_index("ix_leads_inbound_tracking_number", "leads", ["inbound_tracking_number"])

    op.create_table(
        "lead_alerts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("lead_id", sa.Integer(), sa.ForeignKey("leads.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "mbi_duplicate",
                "shipping_exception",
                "data_quality",
                "compliance_issue",
                name="alert_type",
            ),
            nullable=False,
        ),
        sa.Column(
            "severity",
            sa.Enum("low", "medium", "high", "critical", name="alert_severity"),
            nullable=False,
            server_default="medium",
        ),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "related_lead_id",
            sa.Integer(),
            sa.ForeignKey("leads.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("dedupe_key", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("is_acknowledged", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("acknowledged_by", sa.String(length=64), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_lead_alerts_lead_id", "lead_alerts", ["lead_id"])
    op.create_index(
        "uq_lead_alerts_open",
        "lead_alerts",
        ["lead_id", "type", "dedupe_key"],
        unique=True,
        postgresql_where=sa.text("NOT is_acknowledged"),
    )

    op.create_table(
        "tracking_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("lead_id", sa.Integer(), sa.ForeignKey("leads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tracking_number", sa.String(length=64), nullable=False),
        sa.Column("direction", sa.Enum("outbound", "inbound", name="tracking_direction"), nullable=False),
        sa.Column("activity_type", sa.String(length=8), nullable=True),
        sa.Column("activity_code", sa.String(length=16), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=200), nullable=True),
        sa.Column("event_date", sa.String(length=8), nullable=True),
        sa.Column("event_time", sa.String(length=6), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_tracking_events_lead_id", "tracking_events", ["lead_id"])
    op.create_index("ix_tracking_events_tracking_number", "tracking_events", ["tracking_number"])

    op.create_table(
        "batch_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "kind",
            sa.Enum(
                "doctor_approval",
                "shipping_report",
                "kit_return",
                "bulk_lead",
                "master_data",
                name="upload_kind",
            ),
            nullable=False,
        ),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "processing", "completed", "failed", "cancelled", name="batch_job_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("total_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors_json", sa.JSON(), nullable=True),
        sa.Column("summary_json", sa.JSON(), nullable=True),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("uploaded_by", sa.String(length=64), nullable=True),
        sa.Column("progress_message", sa.String(length=255), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_batch_jobs_status", "batch_jobs", ["status"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("request_id", sa.String(length=120), nullable=True),
        sa.Column("before_json", sa.JSON(), nullable=True),
        sa.Column("after_json", sa.JSON(), nullable=True),
    )
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_entity_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_batch_jobs_status", table_name="batch_jobs")
    op.drop_table("batch_jobs")
    op.drop_index("ix_tracking_events_tracking_number", table_name="tracking_events")
    op.drop_index("ix_tracking_events_lead_id", table_name="tracking_events")
    op.drop_table("tracking_events")
    op.drop_index("uq_lead_alerts_open", table_name="lead_alerts")
    op.drop_index("ix_lead_alerts_lead_id", table_name="lead_alerts")
    op.drop_table("lead_alerts")
    for index in (
        "ix_leads_inbound_tracking_number",
        "ix_leads_tracking_number",
        "ix_leads_vendor_id",
        "ix_leads_status",
        "ix_leads_phone",
        "ix_leads_mbi",
    ):
        op.drop_index(index, table_name="leads")
    op.drop_table("leads")
    op.drop_index("ix_vendors_parent_vendor_id", table_name="vendors")
    op.drop_index("ix_vendors_code", table_name="vendors")
    op.drop_table("vendors")
    for enum_name in (
        "batch_job_status",
        "upload_kind",
        "tracking_direction",
        "alert_severity",
        "alert_type",
        "doctor_approval_status",
        "collections_disposition",
        "advocate_disposition",
        "test_type",
        "lead_status",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
