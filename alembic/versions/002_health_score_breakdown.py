"""Store the weighted factor breakdown with each cached score.

Revision ID: 002_health_score_breakdown
Revises: 001_client_health_scores
Create Date: 2026-10-18

Adds client_health_scores.breakdown_data, a JSON array of
{key, name, score, weight, detail} objects. Existing rows get an empty
array and are filled on their next recompute.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002_health_score_breakdown"
down_revision: Union[str, None] = "001_client_health_scores"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "client_health_scores",
        sa.Column(
            "breakdown_data",
            sa.JSON(),
            server_default=sa.text("'[]'::json"),
            nullable=False,
        ),
    )


def downgrade() -> None:
    op.drop_column("client_health_scores", "breakdown_data")
