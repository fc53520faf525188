"""warehouse scheduling tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610180001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_correlation_id", "events", ["correlation_id"])

    op.create_table(
        "warehouse_tasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("assigned_worker", sa.Integer(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_warehouse_tasks_task_type", "warehouse_tasks", ["task_type"])
    op.create_index("ix_warehouse_tasks_status", "warehouse_tasks", ["status"])
    op.create_index("ix_warehouse_tasks_priority", "warehouse_tasks", ["priority"])
    op.create_index("ix_warehouse_tasks_assigned_worker", "warehouse_tasks", ["assigned_worker"])
    op.create_index("ix_warehouse_tasks_location", "warehouse_tasks", ["location"])
    op.create_index("ix_warehouse_tasks_created_at", "warehouse_tasks", ["created_at"])

    op.create_table(
        "worker_skills",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column("worker_name", sa.String(), nullable=False),
        sa.Column("skill_category", sa.String(), nullable=False),
        sa.Column("skill_level", sa.Integer(), nullable=False),
        sa.Column("skill_score", sa.Integer(), nullable=False),
        sa.Column("certifications", sa.JSON(), nullable=False),
        sa.Column("certified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("worker_id", "skill_category", name="uq_worker_skills_worker_category"),
    )
    op.create_index("ix_worker_skills_worker_id", "worker_skills", ["worker_id"])
    op.create_index("ix_worker_skills_skill_category", "worker_skills", ["skill_category"])
    op.create_index("ix_worker_skills_is_active", "worker_skills", ["is_active"])
    op.create_index("ix_worker_skills_created_at", "worker_skills", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_worker_skills_created_at", table_name="worker_skills")
    op.drop_index("ix_worker_skills_is_active", table_name="worker_skills")
    op.drop_index("ix_worker_skills_skill_category", table_name="worker_skills")
    op.drop_index("ix_worker_skills_worker_id", table_name="worker_skills")
    op.drop_table("worker_skills")

    op.drop_index("ix_warehouse_tasks_created_at", table_name="warehouse_tasks")
    op.drop_index("ix_warehouse_tasks_location", table_name="warehouse_tasks")
    op.drop_index("ix_warehouse_tasks_assigned_worker", table_name="warehouse_tasks")
    op.drop_index("ix_warehouse_tasks_priority", table_name="warehouse_tasks")
    op.drop_index("ix_warehouse_tasks_status", table_name="warehouse_tasks")
    op.drop_index("ix_warehouse_tasks_task_type", table_name="warehouse_tasks")
    op.drop_table("warehouse_tasks")

    op.drop_index("ix_events_correlation_id", table_name="events")
    op.drop_index("ix_events_actor_id", table_name="events")
    op.drop_index("ix_events_ts", table_name="events")
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_table("events")
