"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None

UUID = postgresql.UUID(as_uuid=True)
JSONB = postgresql.JSONB


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # ── subjects ──
    op.create_table(
        "subjects",
        sa.Column("id", UUID, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("owner_id", UUID, nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("base_prompt", sa.Text, nullable=True),
        sa.Column("status", sa.String(32), server_default="draft", nullable=False),
        sa.Column("face_refs", JSONB, server_default="[]"),
        sa.Column("body_refs", JSONB, server_default="[]"),
        sa.Column("assets", JSONB, server_default="[]"),
        sa.Column("warnings", JSONB, server_default="[]"),
        *_timestamps(),
    )

    # ── photoshoots ──
    op.create_table(
        "photoshoots",
        sa.Column("id", UUID, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("owner_id", UUID, nullable=True),
        sa.Column("subject_id", UUID, sa.ForeignKey("subjects.id"), nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("prompt", sa.Text, nullable=True),
        sa.Column("status", sa.String(32), server_default="queued", nullable=False),
        sa.Column("base_asset_id", UUID, nullable=True),
        sa.Column("warnings", JSONB, server_default="[]"),
        *_timestamps(),
    )

    # ── assets ──
    op.create_table(
        "assets",
        sa.Column("id", UUID, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("owner_id", UUID, nullable=True),
        sa.Column("subject_id", UUID, sa.ForeignKey("subjects.id"), nullable=True),
        sa.Column("photoshoot_id", UUID, sa.ForeignKey("photoshoots.id"), nullable=True),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("bucket", sa.String(128), nullable=False),
        sa.Column("object_path", sa.String(1024), nullable=False),
        sa.Column("filename", sa.String(512), nullable=True),
        sa.Column("url", sa.String(2048), nullable=True),
        sa.Column("meta", JSONB, server_default="{}"),
        sa.Column("active", sa.Boolean, server_default=sa.false(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("bucket", "object_path"),
    )
    op.create_index("ix_assets_subject_id", "assets", ["subject_id"])
    op.create_index("ix_assets_photoshoot_id", "assets", ["photoshoot_id"])

    # ── photoshoot_assets ──
    op.create_table(
        "photoshoot_assets",
        sa.Column("id", UUID, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("photoshoot_id", UUID, sa.ForeignKey("photoshoots.id"), nullable=False),
        sa.Column("asset_id", UUID, sa.ForeignKey("assets.id"), nullable=False),
        sa.Column("role", sa.String(32), server_default="result"),
        sa.Column("position", sa.Integer, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("photoshoot_id", "asset_id"),
    )

    # ── jobs ──
    op.create_table(
        "jobs",
        sa.Column("id", UUID, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("job_type", sa.String(64), nullable=False),
        sa.Column("subject_id", UUID, nullable=True),
        sa.Column("photoshoot_id", UUID, nullable=True),
        sa.Column("status", sa.String(32), server_default="queued", nullable=False),
        sa.Column("payload", JSONB, server_default="{}"),
        sa.Column("result", JSONB, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("attempts", sa.Integer, server_default="0", nullable=False),
        sa.Column("max_attempts", sa.Integer, server_default="5", nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.String(128), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trace_id", UUID, server_default=sa.text("gen_random_uuid()"), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_jobs_subject_id", "jobs", ["subject_id"])
    op.create_index("ix_jobs_photoshoot_id", "jobs", ["photoshoot_id"])
    op.create_index(
        "ix_jobs_queued_created",
        "jobs",
        ["created_at"],
        postgresql_where=sa.text("status = 'queued'"),
    )
    op.create_index(
        "ix_jobs_running_locked",
        "jobs",
        ["locked_at"],
        postgresql_where=sa.text("status = 'running'"),
    )

    # ── events ──
    op.create_table(
        "events",
        sa.Column("id", UUID, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("level", sa.String(16), server_default="info"),
        sa.Column("source", sa.String(128), nullable=True),
        sa.Column("job_id", UUID, nullable=True),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_events_type", "events", ["event_type"])
    op.create_index("ix_events_job_id", "events", ["job_id"])


def downgrade() -> None:
    for table in [
        "events", "jobs", "photoshoot_assets", "assets", "photoshoots", "subjects",
    ]:
        op.drop_table(table)
