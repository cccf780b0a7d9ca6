"""initial schema - contacts, conversations, agents, forms, billing

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18

New databases: `alembic upgrade head` creates every table from the models.
"""
from typing import Sequence, Union

from alembic import op

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables from the SQLAlchemy models (checkfirst, idempotent)."""
    from engage.models import Base

    Base.metadata.create_all(bind=op.get_bind(), checkfirst=True)


def downgrade() -> None:
    """Drop all tables. DESTRUCTIVE — dev/test only."""
    from engage.models import Base

    Base.metadata.drop_all(bind=op.get_bind())
