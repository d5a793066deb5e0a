"""Seed catalog - customer personas and product words.

Revision ID: 002_seed_catalog
Revises: 001_initial
Create Date: 2026-10-19

"""
import uuid
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision: str = "002_seed_catalog"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ROLES = (
    "Negotiator", "Astronaut", "Pirate", "Kindergarten Teacher", "Vampire",
    "Farmer", "Rock Star", "Detective", "Grandmother", "Wizard",
    "Lifeguard", "Chef", "Robot", "Time Traveler", "Ghost",
)

WORDS = (
    "Umbrella", "Toaster", "Cactus", "Rocket", "Blanket", "Sandwich",
    "Ladder", "Mirror", "Bucket", "Guitar", "Pillow", "Balloon",
    "Compass", "Helmet", "Candle", "Spoon", "Backpack", "Teapot",
    "Skateboard", "Lantern", "Hammock", "Magnet", "Scarf", "Trampoline",
)

_roles = sa.table(
    "roles",
    sa.column("id", UUID(as_uuid=True)),
    sa.column("name", sa.String),
)
_words = sa.table(
    "words",
    sa.column("id", UUID(as_uuid=True)),
    sa.column("word", sa.String),
)


def upgrade() -> None:
    op.bulk_insert(_roles, [{"id": uuid.uuid4(), "name": n} for n in ROLES])
    op.bulk_insert(_words, [{"id": uuid.uuid4(), "word": w} for w in WORDS])


def downgrade() -> None:
    op.execute(_words.delete().where(_words.c.word.in_(WORDS)))
    op.execute(_roles.delete().where(_roles.c.name.in_(ROLES)))
