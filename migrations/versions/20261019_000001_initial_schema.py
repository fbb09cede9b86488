from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    processing_state_enum = sa.Enum("waiting_upload", "processing", "ready", "errored", name="processingstate")
    pending_effect_enum = sa.Enum("derive_media", name="pendingeffect")
    enrichment_kind_enum = sa.Enum("title", "description", name="enrichmentkind")
    job_status_enum = sa.Enum("queued", "succeeded", "failed", name="jobstatus")

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("image_url", sa.String(length=2048), nullable=True),
        sa.Column("banner_url", sa.String(length=2048), nullable=True),
        sa.Column("banner_key", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "videos",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("upload_id", sa.String(length=255), nullable=True, unique=True),
        sa.Column("external_asset_id", sa.String(length=255), nullable=True, unique=True),
        sa.Column("playback_id", sa.String(length=255), nullable=True),
        sa.Column("processing_state", processing_state_enum, nullable=False, server_default="waiting_upload"),
        sa.Column("error_reason", sa.Text(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False, server_default="Untitled"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("thumbnail_url", sa.String(length=2048), nullable=True),
        sa.Column("thumbnail_key", sa.String(length=512), nullable=True),
        sa.Column("preview_url", sa.String(length=2048), nullable=True),
        sa.Column("preview_key", sa.String(length=512), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("transcript_track_id", sa.String(length=255), nullable=True),
        sa.Column("pending_effect", pending_effect_enum, nullable=True),
        sa.Column("pending_playback_id", sa.String(length=255), nullable=True),
        sa.Column("pending_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_videos_owner_id", "videos", ["owner_id"])

    op.create_table(
        "enrichment_jobs",
        sa.Column("job_id", sa.String(length=128), primary_key=True),
        sa.Column("kind", enrichment_kind_enum, nullable=False),
        sa.Column("external_asset_id", sa.String(length=255), nullable=False),
        sa.Column("idempotency_key", sa.String(length=512), nullable=False, unique=True),
        sa.Column("status", job_status_enum, nullable=False, server_default="queued"),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("error", sa.JSON(), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_enrichment_jobs_asset", "enrichment_jobs", ["external_asset_id"])


def downgrade() -> None:
    op.drop_index("ix_enrichment_jobs_asset", table_name="enrichment_jobs")
    op.drop_table("enrichment_jobs")
    op.drop_index("ix_videos_owner_id", table_name="videos")
    op.drop_table("videos")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_name in ("jobstatus", "enrichmentkind", "pendingeffect", "processingstate"):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
