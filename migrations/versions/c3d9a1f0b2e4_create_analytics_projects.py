"""create_analytics_projects

Creates the tenant configuration table, seeds the 'default' project
(which shares the system store) and creates its device table.

Revision ID: c3d9a1f0b2e4
Revises:
Create Date: 2026-10-18 10:12:44.301552

"""

import uuid
from typing import Sequence, Union

import sqlalchemy as sa
import uuid_utils as uuid7_lib
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "c3d9a1f0b2e4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

DEFAULT_PREFIX = "analytics_"


def upgrade() -> None:
    """Create analytics_projects and the default project's devices table."""
    op.create_table(
        "analytics_projects",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("project_name", sa.String(length=200), nullable=False),
        sa.Column("db_host", sa.String(length=255), nullable=True),
        sa.Column("db_port", sa.Integer(), nullable=True),
        sa.Column("db_name", sa.String(length=100), nullable=True),
        sa.Column("db_user", sa.String(length=100), nullable=True),
        sa.Column("db_password_encrypted", sa.Text(), nullable=True),
        sa.Column(
            "table_prefix",
            sa.String(length=64),
            nullable=False,
            server_default=DEFAULT_PREFIX,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_analytics_projects_project_id",
        "analytics_projects",
        ["project_id"],
        unique=True,
    )

    conn = op.get_bind()
    conn.execute(
        sa.text(
            "INSERT INTO analytics_projects (id, project_id, project_name, table_prefix)"
            " VALUES (:id, 'default', 'Default Project', :prefix)"
        ),
        {"id": uuid.UUID(bytes=uuid7_lib.uuid7().bytes), "prefix": DEFAULT_PREFIX},
    )

    devices = f"{DEFAULT_PREFIX}devices"
    op.create_table(
        devices,
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("device_id", sa.String(length=36), nullable=False),
        sa.Column("api_key", sa.String(length=64), nullable=False),
        sa.Column("secret_key", sa.Text(), nullable=False),
        sa.Column("device_model", sa.String(length=100), nullable=True),
        sa.Column("os_version", sa.String(length=50), nullable=True),
        sa.Column("app_version", sa.String(length=50), nullable=True),
        sa.Column("is_banned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ban_reason", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "last_active_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("api_key"),
        sa.UniqueConstraint(
            "project_id", "device_id", name=f"uq_{devices}_project_device"
        ),
    )
    op.create_index(f"ix_{devices}_project_id", devices, ["project_id"])


def downgrade() -> None:
    """Drop the default devices table and analytics_projects."""
    devices = f"{DEFAULT_PREFIX}devices"
    op.drop_index(f"ix_{devices}_project_id", table_name=devices)
    op.drop_table(devices)
    op.drop_index("ix_analytics_projects_project_id", table_name="analytics_projects")
    op.drop_table("analytics_projects")
