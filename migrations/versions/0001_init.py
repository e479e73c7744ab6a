"""initial schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "private_keys",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("key_data", sa.Text(), nullable=False),
        sa.Column("passphrase", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_private_keys_name", "private_keys", ["name"], unique=True)

    op.create_table(
        "hosts",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("port", sa.Integer(), nullable=False, server_default=sa.text("22")),
        sa.Column("username", sa.String(length=64), nullable=False, server_default="root"),
        sa.Column(
            "private_key_id",
            sa.String(length=64),
            sa.ForeignKey("private_keys.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="standalone"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="validating"),
        sa.Column(
            "consecutive_failures", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("last_failure_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("engine_version", sa.String(length=64), nullable=True),
        sa.Column("error", sa.String(length=1024), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_hosts_name", "hosts", ["name"], unique=True)

    op.create_table(
        "workloads",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("project_name", sa.String(length=128), nullable=False, server_default="default"),
        sa.Column(
            "host_id",
            sa.String(length=64),
            sa.ForeignKey("hosts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source_type", sa.String(length=32), nullable=False, server_default="image"),
        sa.Column("image", sa.String(length=255), nullable=True),
        sa.Column("compose_file", sa.Text(), nullable=True),
        sa.Column("repository_url", sa.String(length=512), nullable=True),
        sa.Column("repository_branch", sa.String(length=128), nullable=True),
        sa.Column("dockerfile", sa.String(length=255), nullable=True),
        sa.Column("build_context", sa.String(length=255), nullable=True),
        sa.Column("domain", sa.String(length=255), nullable=True),
        sa.Column("port", sa.Integer(), nullable=True),
        sa.Column("enable_https", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("replicas", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("swarm_replicas", sa.Integer(), nullable=True),
        sa.Column(
            "deployment_mode", sa.String(length=32), nullable=False, server_default="container"
        ),
        sa.Column("swarm_networks", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("health_check_url", sa.String(length=512), nullable=True),
        sa.Column(
            "health_check_interval_seconds",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("60"),
        ),
        sa.Column(
            "health_check_timeout_seconds",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("10"),
        ),
        sa.Column(
            "max_consecutive_failures", sa.Integer(), nullable=False, server_default=sa.text("3")
        ),
        sa.Column(
            "consecutive_failures", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("health_status", sa.String(length=32), nullable=False, server_default="unknown"),
        sa.Column("last_health_check_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_restart", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_rollback", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("backup_schedule", sa.String(length=64), nullable=True),
        sa.Column(
            "backup_retention_days", sa.Integer(), nullable=False, server_default=sa.text("30")
        ),
        sa.Column("swarm_service_id", sa.String(length=128), nullable=True),
        sa.Column("container_id", sa.String(length=128), nullable=True),
        sa.Column("current_image", sa.String(length=255), nullable=True),
        sa.Column("lease_owner", sa.String(length=64), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_workloads_name", "workloads", ["name"], unique=True)
    op.create_index("ix_workloads_host_id", "workloads", ["host_id"])

    op.create_table(
        "volumes",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "workload_id",
            sa.String(length=64),
            sa.ForeignKey("workloads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("mount_path", sa.String(length=512), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("workload_id", "name", name="uq_volumes_workload_name"),
    )
    op.create_index("ix_volumes_workload_id", "volumes", ["workload_id"])

    op.create_table(
        "environment_variables",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "workload_id",
            sa.String(length=64),
            sa.ForeignKey("workloads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("value", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_secret", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("workload_id", "key", name="uq_env_workload_key"),
    )
    op.create_index(
        "ix_environment_variables_workload_id", "environment_variables", ["workload_id"]
    )

    op.create_table(
        "deployments",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "workload_id",
            sa.String(length=64),
            sa.ForeignKey("workloads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action", sa.String(length=32), nullable=False, server_default="deploy"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="queued"),
        sa.Column("commit_hash", sa.String(length=64), nullable=True),
        sa.Column("image_tag", sa.String(length=255), nullable=True),
        sa.Column("replicas", sa.Integer(), nullable=True),
        sa.Column("container_id", sa.String(length=128), nullable=True),
        sa.Column("service_id", sa.String(length=128), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("note", sa.String(length=1024), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_deployments_workload_id", "deployments", ["workload_id"])

    op.create_table(
        "backups",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "workload_id",
            sa.String(length=64),
            sa.ForeignKey("workloads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "host_id",
            sa.String(length=64),
            sa.ForeignKey("hosts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="queued"),
        sa.Column("storage_path", sa.String(length=512), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("s3_bucket", sa.String(length=255), nullable=True),
        sa.Column("s3_key", sa.String(length=512), nullable=True),
        sa.Column(
            "retention_days", sa.Integer(), nullable=False, server_default=sa.text("30")
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("note", sa.String(length=1024), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_backups_workload_id", "backups", ["workload_id"])
    op.create_index("ix_backups_expires_at", "backups", ["expires_at"])

    op.create_table(
        "health_checks",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "workload_id",
            sa.String(length=64),
            sa.ForeignKey("workloads.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "host_id",
            sa.String(length=64),
            sa.ForeignKey("hosts.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("probe", sa.String(length=32), nullable=False, server_default="engine"),
        sa.Column("response_time_ms", sa.Integer(), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_health_checks_workload_checked", "health_checks", ["workload_id", "checked_at"]
    )
    op.create_index("ix_health_checks_host_checked", "health_checks", ["host_id", "checked_at"])

    op.create_table(
        "events",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("level", sa.String(length=16), nullable=False),
        sa.Column("workload_id", sa.String(length=64), nullable=True),
        sa.Column("fields", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        *_timestamps(),
    )
    op.create_index("ix_events_category", "events", ["category"])
    op.create_index("ix_events_workload_id", "events", ["workload_id"])
    op.create_index("ix_events_created_at", "events", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_events_created_at", table_name="events")
    op.drop_index("ix_events_workload_id", table_name="events")
    op.drop_index("ix_events_category", table_name="events")
    op.drop_table("events")

    op.drop_index("ix_health_checks_host_checked", table_name="health_checks")
    op.drop_index("ix_health_checks_workload_checked", table_name="health_checks")
    op.drop_table("health_checks")

    op.drop_index("ix_backups_expires_at", table_name="backups")
    op.drop_index("ix_backups_workload_id", table_name="backups")
    op.drop_table("backups")

    op.drop_index("ix_deployments_workload_id", table_name="deployments")
    op.drop_table("deployments")

    op.drop_index("ix_environment_variables_workload_id", table_name="environment_variables")
    op.drop_table("environment_variables")

    op.drop_index("ix_volumes_workload_id", table_name="volumes")
    op.drop_table("volumes")

    op.drop_index("ix_workloads_host_id", table_name="workloads")
    op.drop_index("ix_workloads_name", table_name="workloads")
    op.drop_table("workloads")

    op.drop_index("ix_hosts_name", table_name="hosts")
    op.drop_table("hosts")

    op.drop_index("ix_private_keys_name", table_name="private_keys")
    op.drop_table("private_keys")
