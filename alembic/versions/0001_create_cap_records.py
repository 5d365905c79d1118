"""Create cap_records table

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Pending challenges and issued tokens share one table; a redeemed
    # challenge row is rewritten in place into its token row.
    op.create_table(
        "cap_records",
        sa.Column("key", sa.String(255), primary_key=True),
        sa.Column("key_type", sa.String(16), nullable=False),
        sa.Column("data", sa.Text, nullable=False),
        sa.Column("expires_at", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    op.create_index("ix_cap_records_key_type", "cap_records", ["key_type"])
    op.create_index("ix_cap_records_expires_at", "cap_records", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_cap_records_expires_at", table_name="cap_records")
    op.drop_index("ix_cap_records_key_type", table_name="cap_records")
    op.drop_table("cap_records")
