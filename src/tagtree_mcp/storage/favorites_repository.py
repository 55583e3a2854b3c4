"""Persisted favorites mirror: the set of favorite tag names."""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from tagtree_mcp.config import config
from tagtree_mcp.exceptions import ErrorCode, PersistenceError
from tagtree_mcp.models.db_models import DBFavoriteTag, get_session_factory, init_db
from tagtree_mcp.models.schema import TagRecord

logger = logging.getLogger(__name__)


class FavoritesRepository:
    """Materialized view of favorite tag names.

    ``TagRecord.is_favorite`` is the source of truth. This table exists for
    consumers that want the names without scanning every tag, and it is
    only ever replaced wholesale by ``rebuild`` (or trimmed by ``discard``
    when a tag is deleted).
    """

    def __init__(self, engine=None, user_id: Optional[int] = None):
        self.engine = engine or init_db()
        self.session_factory = get_session_factory(self.engine)
        self.user_id = config.user_id if user_id is None else user_id

    def get_all(self) -> List[str]:
        """Get favorite tag names in their stored order."""
        try:
            with self.session_factory() as session:
                rows = session.scalars(
                    select(DBFavoriteTag.tag_name)
                    .where(DBFavoriteTag.user_id == self.user_id)
                    .order_by(DBFavoriteTag.position, DBFavoriteTag.id)
                ).all()
                return list(rows)
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to read favorite tags",
                operation="get_favorites",
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def rebuild(self, records: Iterable[TagRecord]) -> List[str]:
        """Replace the mirror with the names of every favorite record.

        Returns:
            The new list of favorite names.
        """
        names = [r.name for r in records if r.is_favorite]
        try:
            with self.session_factory() as session:
                session.execute(
                    delete(DBFavoriteTag).where(DBFavoriteTag.user_id == self.user_id)
                )
                for position, name in enumerate(names):
                    session.add(
                        DBFavoriteTag(user_id=self.user_id, tag_name=name, position=position)
                    )
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to rebuild favorite tags",
                operation="rebuild_favorites",
                original_error=e,
            ) from e
        logger.debug(f"Favorites mirror rebuilt with {len(names)} names")
        return names

    def discard(self, tag_name: str) -> bool:
        """Remove one name. Returns False if it was not a favorite."""
        try:
            with self.session_factory() as session:
                result = session.execute(
                    delete(DBFavoriteTag).where(
                        DBFavoriteTag.user_id == self.user_id,
                        DBFavoriteTag.tag_name == tag_name,
                    )
                )
                session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to update favorite tags",
                operation="discard_favorite",
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e
