"""create_webhook_records

Revision ID: 5f1d2c8a9e3b
Revises:
Create Date: 2026-10-19 10:40:12.118204

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5f1d2c8a9e3b"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

webhook_status = sa.Enum(
    "received", "processing", "processed", "failed", name="webhook_status"
)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "webhook_records",
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("status", webhook_status, nullable=False),
        sa.Column(
            "first_seen_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "last_attempt_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_error", sa.Text(), nullable=True),
        # unique key is the idempotency gate for concurrent deliveries
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_webhook_records_status", "webhook_records", ["status"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_webhook_records_status", table_name="webhook_records")
    op.drop_table("webhook_records")
    webhook_status.drop(op.get_bind(), checkfirst=True)
