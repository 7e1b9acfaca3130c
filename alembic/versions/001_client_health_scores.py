"""Client health score cache.

Revision ID: 001_client_health_scores
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_client_health_scores"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "client_health_scores",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("client_id", UUID(as_uuid=False), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("delivery_rate", sa.Integer(), nullable=False),
        sa.Column("on_time_score", sa.Integer(), nullable=False),
        sa.Column("payment_score", sa.Integer(), nullable=False),
        sa.Column("engagement_score", sa.Integer(), nullable=False),
        sa.Column("grade", sa.String(1), nullable=False),
        sa.Column("trend", sa.String(10), server_default=sa.text("'flat'"), nullable=False),
        sa.Column("previous_score", sa.Integer(), nullable=True),
        sa.Column("narrative", sa.Text(), nullable=True),
        sa.Column("calculated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("client_id", name="uq_client_health_scores_client_id"),
    )
    op.create_index("ix_client_health_scores_score", "client_health_scores", ["score"])


def downgrade() -> None:
    op.drop_index("ix_client_health_scores_score", table_name="client_health_scores")
    op.drop_table("client_health_scores")
