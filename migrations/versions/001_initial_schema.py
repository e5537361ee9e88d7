"""Initial schema: search jobs, their deduplicated results and round artifacts.

Revision ID: 001
Revises: (none)
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- search_jobs ---
    op.create_table(
        "search_jobs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("request", JSONB(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("round_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("input_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("output_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("api_calls", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("target_results", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("max_rounds", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("followup_quiz", JSONB(), nullable=True),
        sa.Column("followup_answers", JSONB(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("cached_result", JSONB(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("idx_search_jobs_user_status", "search_jobs", ["user_id", "status"])

    # --- search_results ---
    op.create_table(
        "search_results",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "job_id",
            UUID(as_uuid=True),
            sa.ForeignKey("search_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("round_num", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("retailer", sa.String(100), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("price_current", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("price_original", sa.Integer(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("confidence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("match_score", sa.Integer(), nullable=True),
        sa.Column("match_reason", sa.Text(), nullable=True),
        sa.Column("rank", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("job_id", "name", "retailer", "url", name="uq_search_results_product"),
    )
    op.create_index(
        "idx_search_results_job_score",
        "search_results",
        ["job_id", "match_score"],
    )

    # --- round_artifacts ---
    op.create_table(
        "round_artifacts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "job_id",
            UUID(as_uuid=True),
            sa.ForeignKey("search_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("round_num", sa.Integer(), nullable=False),
        sa.Column("artifact_type", sa.String(50), nullable=False),
        sa.Column("content", JSONB(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("idx_round_artifacts_job", "round_artifacts", ["job_id", "round_num"])


def downgrade() -> None:
    op.drop_table("round_artifacts")
    op.drop_table("search_results")
    op.drop_table("search_jobs")
