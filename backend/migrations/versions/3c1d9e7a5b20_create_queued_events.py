"""Create the queued webhook events table.

Revision ID: 3c1d9e7a5b20
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "3c1d9e7a5b20"
down_revision = None
branch_labels = None
depends_on = None

_INDEXES: tuple[tuple[str, list[str]], ...] = (
    ("ix_queued_events_topic", ["topic"]),
    ("ix_queued_events_tenant", ["tenant"]),
    ("ix_queued_events_status", ["status"]),
    ("ix_queued_events_status_created_at", ["status", "created_at"]),
    ("ix_queued_events_status_next_attempt_at", ["status", "next_attempt_at"]),
)


def _index_names(inspector: sa.Inspector, table_name: str) -> set[str]:
    return {item["name"] for item in inspector.get_indexes(table_name)}


def upgrade() -> None:
    """Create queued_events and its polling indexes."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("queued_events"):
        op.create_table(
            "queued_events",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("topic", sa.String(), nullable=False),
            sa.Column("tenant", sa.String(), nullable=False),
            sa.Column("payload", sa.LargeBinary(), nullable=False),
            sa.Column("status", sa.String(), nullable=False),
            sa.Column("attempts", sa.Integer(), nullable=False),
            sa.Column("last_error", sa.String(), nullable=True),
            sa.Column("next_attempt_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    inspector = sa.inspect(bind)
    existing = _index_names(inspector, "queued_events")
    for name, columns in _INDEXES:
        if name not in existing:
            op.create_index(name, "queued_events", columns)


def downgrade() -> None:
    """Drop queued_events."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if inspector.has_table("queued_events"):
        existing = _index_names(inspector, "queued_events")
        for name, _columns in reversed(_INDEXES):
            if name in existing:
                op.drop_index(name, table_name="queued_events")
        op.drop_table("queued_events")
