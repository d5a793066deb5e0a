"""Content Oracle - random draws from the immutable role and word catalogs.

Invariants:
    - Draws are without replacement within one call
    - Catalog rows are never written by the engine
    - Asking for more rows than the catalog holds returns the whole catalog
"""

import logging
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select

from snakeoil.core.records import RoleRecord, WordRecord
from snakeoil.infrastructure.database import DatabaseSessionManager
from snakeoil.models.catalog import Role, Word

logger = logging.getLogger(__name__)


class ContentOracle:
    """Catalog reads for role and word offers."""

    def __init__(self, db: DatabaseSessionManager):
        self._db = db

    async def fetch_random_roles(self, n: int) -> list[RoleRecord]:
        async with self._db.session() as db:
            result = await db.execute(
                select(Role).order_by(func.random()).limit(n),
            )
            roles = [RoleRecord.model_validate(r) for r in result.scalars()]
        if len(roles) < n:
            logger.warning(f"Role catalog holds only {len(roles)} of {n} requested")
        return roles

    async def fetch_random_words(self, n: int) -> list[WordRecord]:
        async with self._db.session() as db:
            result = await db.execute(
                select(Word).order_by(func.random()).limit(n),
            )
            words = [WordRecord.model_validate(w) for w in result.scalars()]
        if len(words) < n:
            logger.warning(f"Word catalog holds only {len(words)} of {n} requested")
        return words

    async def role_exists(self, role_id: UUID) -> bool:
        async with self._db.session() as db:
            result = await db.execute(select(Role.id).where(Role.id == role_id))
            return result.first() is not None

    async def words_exist(self, word_ids: Iterable[UUID]) -> bool:
        ids = set(word_ids)
        async with self._db.session() as db:
            result = await db.execute(select(Word.id).where(Word.id.in_(ids)))
            return len(result.all()) == len(ids)

    async def names_for(self, ids: Iterable[UUID]) -> dict[UUID, str]:
        """Display names of roles and words by id. Unknown ids are omitted."""
        ids = set(ids)
        if not ids:
            return {}
        async with self._db.session() as db:
            roles = await db.execute(
                select(Role.id, Role.name).where(Role.id.in_(ids)),
            )
            words = await db.execute(
                select(Word.id, Word.word).where(Word.id.in_(ids)),
            )
            names = {row[0]: row[1] for row in roles}
            names.update({row[0]: row[1] for row in words})
        return names
