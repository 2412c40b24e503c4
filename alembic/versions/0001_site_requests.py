"""Site sessions, content requests, image drafts and request history"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_site_requests"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')

    op.execute(
        "CREATE TYPE site_request_type AS ENUM ('content','images','services','hero','about','testimonials','faq','seo','blog','contact','custom');"
    )
    op.execute(
        "CREATE TYPE site_request_status AS ENUM ('pending','assigned','processing','completed','rejected','cancelled','failed');"
    )
    op.execute("CREATE TYPE site_request_priority AS ENUM ('low','normal','high','urgent');")
    op.execute(
        "CREATE TYPE site_request_change_type AS ENUM ('status_change','assignment_change','priority_change','content_update','notes_update','cost_update','merge_applied','merge_failed');"
    )

    uuid = postgresql.UUID(as_uuid=True)
    jsonb = postgresql.JSONB(astext_type=sa.Text())
    request_type_enum = postgresql.ENUM(name="site_request_type", create_type=False)
    request_status_enum = postgresql.ENUM(name="site_request_status", create_type=False)
    request_priority_enum = postgresql.ENUM(name="site_request_priority", create_type=False)
    change_type_enum = postgresql.ENUM(name="site_request_change_type", create_type=False)

    op.create_table(
        "site_sessions",
        sa.Column("id", uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("customer_id", sa.Text(), nullable=False),
        sa.Column("site_name", sa.Text(), nullable=True),
        sa.Column("business_type", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    )
    op.create_index("idx_site_sessions_customer", "site_sessions", ["customer_id"])

    op.create_table(
        "site_session_sections",
        sa.Column("id", uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "session_id",
            uuid,
            sa.ForeignKey("site_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("section", sa.Text(), nullable=False),
        sa.Column("data", jsonb, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.UniqueConstraint("session_id", "section", name="uq_site_session_sections_section"),
    )

    op.create_table(
        "site_requests",
        sa.Column("id", uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("customer_id", sa.Text(), nullable=False),
        sa.Column("site_id", sa.Text(), nullable=True),
        sa.Column(
            "session_id",
            uuid,
            sa.ForeignKey("site_sessions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("request_type", request_type_enum, nullable=False),
        sa.Column("business_type", sa.Text(), nullable=False),
        sa.Column("terminology", sa.Text(), nullable=True),
        sa.Column("status", request_status_enum, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("priority", request_priority_enum, nullable=False, server_default=sa.text("'normal'")),
        sa.Column("admin_id", sa.Text(), nullable=True),
        sa.Column("request_data", jsonb, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("generated_content", jsonb, nullable=True),
        sa.Column("images_version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("processing_notes", sa.Text(), nullable=True),
        sa.Column("admin_comments", sa.Text(), nullable=True),
        sa.Column("estimated_cost", sa.Numeric(10, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("actual_cost", sa.Numeric(10, 4), nullable=True),
        sa.Column("revision_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("customer_rating", sa.Integer(), nullable=True),
        sa.Column("customer_feedback", sa.Text(), nullable=True),
        sa.Column("processing_duration", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    )
    op.create_index("idx_site_requests_customer", "site_requests", ["customer_id"])
    op.create_index("idx_site_requests_status", "site_requests", ["status"])
    op.create_index("idx_site_requests_type", "site_requests", ["request_type"])
    op.create_index("idx_site_requests_admin", "site_requests", ["admin_id"])
    op.create_index("idx_site_requests_created", "site_requests", ["created_at"])
    op.create_index("idx_site_requests_priority", "site_requests", ["priority"])
    op.create_index("idx_site_requests_session", "site_requests", ["session_id"])

    op.create_table(
        "site_request_image_drafts",
        sa.Column("id", uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "request_id",
            uuid,
            sa.ForeignKey("site_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("filename", sa.Text(), nullable=False),
        sa.Column("content_type", sa.Text(), nullable=True),
        sa.Column("size_bytes", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.UniqueConstraint("request_id", "role", name="uq_site_request_image_drafts_role"),
    )

    op.create_table(
        "site_request_history",
        sa.Column("id", uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "request_id",
            uuid,
            sa.ForeignKey("site_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("change_type", change_type_enum, nullable=False),
        sa.Column("previous_status", sa.Text(), nullable=True),
        sa.Column("new_status", sa.Text(), nullable=True),
        sa.Column("changed_by", sa.Text(), nullable=True),
        sa.Column("details", jsonb, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    )
    op.create_index(
        "idx_site_request_history_request", "site_request_history", ["request_id", "created_at"]
    )
    op.create_index(
        "idx_site_request_history_change", "site_request_history", ["change_type", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_site_request_history_change", table_name="site_request_history")
    op.drop_index("idx_site_request_history_request", table_name="site_request_history")
    op.drop_table("site_request_history")
    op.drop_table("site_request_image_drafts")
    op.drop_index("idx_site_requests_session", table_name="site_requests")
    op.drop_index("idx_site_requests_priority", table_name="site_requests")
    op.drop_index("idx_site_requests_created", table_name="site_requests")
    op.drop_index("idx_site_requests_admin", table_name="site_requests")
    op.drop_index("idx_site_requests_type", table_name="site_requests")
    op.drop_index("idx_site_requests_status", table_name="site_requests")
    op.drop_index("idx_site_requests_customer", table_name="site_requests")
    op.drop_table("site_requests")
    op.drop_table("site_session_sections")
    op.drop_index("idx_site_sessions_customer", table_name="site_sessions")
    op.drop_table("site_sessions")

    op.execute("DROP TYPE IF EXISTS site_request_change_type;")
    op.execute("DROP TYPE IF EXISTS site_request_priority;")
    op.execute("DROP TYPE IF EXISTS site_request_status;")
    op.execute("DROP TYPE IF EXISTS site_request_type;")
