"""create share, job, generation and quota tables

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "shares",
        sa.Column("share_id", sa.String(), nullable=False),
        sa.Column("schema_version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("content_hash", sa.String(), nullable=False),
        sa.Column("payload_path", sa.String(), nullable=False),
        sa.Column("owner_type", sa.String(), nullable=True),
        sa.Column("owner_id", sa.String(), nullable=True),
        sa.Column("owner_email", sa.String(), nullable=True),
        sa.Column("idempotency_hash", sa.String(), nullable=True),
        sa.Column("view_count", sa.Integer(), nullable=False),
        sa.Column("last_viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("share_id"),
    )
    op.create_index(op.f("ix_shares_owner_id"), "shares", ["owner_id"], unique=False)

    op.create_table(
        "share_idempotency",
        sa.Column("idempotency_hash", sa.String(), nullable=False),
        sa.Column("schema_version", sa.Integer(), nullable=False),
        sa.Column("target_id", sa.String(), nullable=False),
        sa.Column("content_hash", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("idempotency_hash"),
    )

    op.create_table(
        "share_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("schema_version", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index(op.f("ix_share_jobs_status"), "share_jobs", ["status"], unique=False)
    op.create_index(op.f("ix_share_jobs_updated_at"), "share_jobs", ["updated_at"], unique=False)

    op.create_table(
        "generations",
        sa.Column("generation_id", sa.String(), nullable=False),
        sa.Column("schema_version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("owner_type", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("owner_email", sa.String(), nullable=True),
        sa.Column("intention", sa.Text(), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=False),
        sa.Column("background_theme", sa.String(), nullable=False),
        sa.Column("scene_time", sa.String(), nullable=False),
        sa.Column("thumbnail_data_url", sa.Text(), nullable=True),
        sa.Column("scene_model", sa.String(), nullable=True),
        sa.Column("music_model", sa.String(), nullable=True),
        sa.Column("payload_path", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("generation_id"),
    )
    op.create_index(
        "ix_generations_owner",
        "generations",
        ["owner_type", "owner_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "generation_daily_quota",
        sa.Column("date_key", sa.String(), nullable=False),
        sa.Column("schema_version", sa.Integer(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("daily_limit", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("date_key"),
    )


def downgrade() -> None:
    op.drop_table("generation_daily_quota")
    op.drop_index("ix_generations_owner", table_name="generations")
    op.drop_table("generations")
    op.drop_index(op.f("ix_share_jobs_updated_at"), table_name="share_jobs")
    op.drop_index(op.f("ix_share_jobs_status"), table_name="share_jobs")
    op.drop_table("share_jobs")
    op.drop_table("share_idempotency")
    op.drop_index(op.f("ix_shares_owner_id"), table_name="shares")
    op.drop_table("shares")
