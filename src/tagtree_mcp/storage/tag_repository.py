"""Repository for tag storage and retrieval."""
import logging
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from tagtree_mcp.config import config
from tagtree_mcp.exceptions import ErrorCode, PersistenceError, TagValidationError
from tagtree_mcp.models.db_models import (DBTag, DBTagColor, get_session_factory,
                                          init_db, note_tags)
from tagtree_mcp.models.schema import (TagApiResult, TagCreate, TagRecord,
                                       normalize_tag_name, utc_now)

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {
    "name", "color", "parent_id", "is_parent", "is_pinned", "is_favorite", "sort_order",
}


class TagRepository:
    """Repository for tags, the color map and note associations.

    This is the authoritative store. All SQLAlchemy failures are re-raised
    as PersistenceError so callers only deal with domain errors.
    """

    def __init__(self, engine=None, user_id: Optional[int] = None):
        """Initialize the tag repository.

        Args:
            engine: SQLAlchemy engine. If None, uses default from config.
            user_id: Owner of the tag set. Defaults to config.user_id.
        """
        self.engine = engine or init_db()
        self.session_factory = get_session_factory(self.engine)
        self.user_id = config.user_id if user_id is None else user_id

    @contextmanager
    def _session(
        self, operation: str, code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED
    ) -> Iterator:
        with self.session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Tag storage failure during {operation}: {e}")
                raise PersistenceError(
                    f"Storage failure during {operation}",
                    operation=operation,
                    code=code,
                    original_error=e,
                ) from e

    def _find_by_name(self, session, name: str) -> Optional[DBTag]:
        # SQLite lower() only folds ASCII, so compare casefolded names here
        key = normalize_tag_name(name)
        db_tags = session.scalars(select(DBTag).where(DBTag.user_id == self.user_id))
        return next((t for t in db_tags if normalize_tag_name(t.name) == key), None)

    def _find(self, session, tag_id: str) -> Optional[DBTag]:
        return session.scalar(
            select(DBTag).where(DBTag.user_id == self.user_id, DBTag.id == tag_id)
        )

    # ========== Tag records ==========

    def create(self, data: TagCreate) -> TagRecord:
        """Create a tag appended after every existing tag.

        Raises:
            TagValidationError: If a tag with the same name (any case) exists.
        """
        with self._session("create_tag") as session:
            if self._find_by_name(session, data.name) is not None:
                raise TagValidationError(
                    f"Tag '{data.name}' already exists",
                    field="name",
                    value=data.name,
                    code=ErrorCode.TAG_ALREADY_EXISTS,
                )
            max_order = session.scalar(
                select(func.max(DBTag.sort_order)).where(DBTag.user_id == self.user_id)
            )
            record = TagRecord(
                name=data.name,
                color=data.color,
                parent_id=data.parent_id,
                is_parent=data.is_parent,
                is_pinned=data.is_pinned,
                is_favorite=data.is_favorite,
                sort_order=(max_order + 1) if max_order is not None else 0,
            )
            session.add(DBTag(user_id=self.user_id, **record.model_dump()))
            session.commit()
            logger.info(f"Created tag: {record.name} ({record.id})")
            return record

    def get(self, tag_id: str) -> Optional[TagRecord]:
        """Get a tag by ID."""
        with self._session("get_tag", ErrorCode.STORAGE_READ_FAILED) as session:
            db_tag = self._find(session, tag_id)
            return self._db_to_model(db_tag) if db_tag else None

    def get_by_name(self, name: str) -> Optional[TagRecord]:
        """Get a tag by name, ignoring case."""
        with self._session("get_tag", ErrorCode.STORAGE_READ_FAILED) as session:
            db_tag = self._find_by_name(session, name)
            return self._db_to_model(db_tag) if db_tag else None

    def get_all(self) -> List[TagRecord]:
        """Get every tag ordered by sort_order, then creation time."""
        with self._session("get_tags", ErrorCode.STORAGE_READ_FAILED) as session:
            db_tags = session.scalars(
                select(DBTag)
                .where(DBTag.user_id == self.user_id)
                .order_by(DBTag.sort_order, DBTag.created_at, DBTag.id)
            ).all()
            return [self._db_to_model(db_tag) for db_tag in db_tags]

    def update(self, tag_id: str, changes: Dict) -> Optional[TagRecord]:
        """Apply a partial update.

        Returns:
            The updated tag, or None if the ID does not exist.

        Raises:
            TagValidationError: On an unknown field or a rename clash.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise TagValidationError(
                f"Cannot update fields: {sorted(unknown)}", field=sorted(unknown)[0]
            )
        with self._session("update_tag") as session:
            db_tag = self._find(session, tag_id)
            if db_tag is None:
                return None
            new_name = changes.get("name")
            if new_name is not None:
                clash = self._find_by_name(session, new_name)
                if clash is not None and clash.id != tag_id:
                    raise TagValidationError(
                        f"Tag '{new_name}' already exists",
                        field="name",
                        value=new_name,
                        code=ErrorCode.TAG_ALREADY_EXISTS,
                    )
            for key, value in changes.items():
                setattr(db_tag, key, value)
            db_tag.updated_at = utc_now()
            session.commit()
            return self._db_to_model(db_tag)

    def delete(self, tag_id: str) -> bool:
        """Delete a tag by ID. Returns False if it did not exist."""
        with self._session("delete_tag", ErrorCode.STORAGE_DELETE_FAILED) as session:
            db_tag = self._find(session, tag_id)
            if db_tag is None:
                return False
            session.execute(delete(note_tags).where(note_tags.c.tag_id == tag_id))
            session.delete(db_tag)
            session.commit()
            logger.info(f"Deleted tag: {db_tag.name} ({tag_id})")
            return True

    def update_order(self, orders: Iterable[Tuple[str, int]]) -> int:
        """Persist several sort_order values in one transaction.

        Returns:
            Number of tags whose order was written.
        """
        count = 0
        with self._session("update_tag_order") as session:
            for tag_id, sort_order in orders:
                result = session.execute(
                    update(DBTag)
                    .where(DBTag.user_id == self.user_id, DBTag.id == tag_id)
                    .values(sort_order=sort_order, updated_at=utc_now())
                )
                count += result.rowcount
            session.commit()
        return count

    # ========== Color map ==========

    def get_colors(self) -> Dict[str, str]:
        """Get the color map keyed by tag name."""
        with self._session("get_tag_colors", ErrorCode.STORAGE_READ_FAILED) as session:
            rows = session.execute(
                select(DBTagColor.tag_name, DBTagColor.color)
                .where(DBTagColor.user_id == self.user_id)
            ).all()
            return {name: color for name, color in rows}

    def set_color(self, tag_name: str, color: str) -> None:
        """Insert or replace the color for a tag name."""
        with self._session("set_tag_color") as session:
            row = session.scalar(
                select(DBTagColor).where(
                    DBTagColor.user_id == self.user_id, DBTagColor.tag_name == tag_name
                )
            )
            if row is None:
                session.add(DBTagColor(user_id=self.user_id, tag_name=tag_name, color=color))
            else:
                row.color = color
            session.commit()

    def delete_color(self, tag_name: str) -> bool:
        """Remove a color map entry. Returns False if there was none."""
        with self._session("delete_tag_color", ErrorCode.STORAGE_DELETE_FAILED) as session:
            result = session.execute(
                delete(DBTagColor).where(
                    DBTagColor.user_id == self.user_id, DBTagColor.tag_name == tag_name
                )
            )
            session.commit()
            return result.rowcount > 0

    def rename_color(self, old_name: str, new_name: str) -> None:
        """Move a color map entry to a new tag name."""
        with self._session("rename_tag_color") as session:
            session.execute(
                update(DBTagColor)
                .where(DBTagColor.user_id == self.user_id, DBTagColor.tag_name == old_name)
                .values(tag_name=new_name)
            )
            session.commit()

    # ========== Note associations ==========

    def add_tag_to_note(self, note_id: str, tag_name: str) -> bool:
        """Associate an external note with a tag. Returns False if the tag is unknown."""
        with self._session("add_tag_to_note") as session:
            db_tag = self._find_by_name(session, tag_name)
            if db_tag is None:
                return False
            exists = session.execute(
                select(note_tags.c.note_id).where(
                    note_tags.c.note_id == note_id, note_tags.c.tag_id == db_tag.id
                )
            ).first()
            if not exists:
                session.execute(note_tags.insert().values(note_id=note_id, tag_id=db_tag.id))
                session.commit()
            return True

    def find_note_ids_by_tag(self, tag_name: str) -> List[str]:
        """Find all note IDs that carry a tag."""
        with self._session("find_notes_by_tag", ErrorCode.STORAGE_READ_FAILED) as session:
            result = session.execute(
                select(note_tags.c.note_id)
                .select_from(note_tags)
                .join(DBTag, note_tags.c.tag_id == DBTag.id)
                .where(DBTag.user_id == self.user_id, DBTag.name == tag_name)
                .order_by(note_tags.c.note_id)
            ).all()
            return [row[0] for row in result]

    # ========== By-name API ==========

    def create_by_name(self, tag_name: str, color: str = "slate") -> TagApiResult:
        """Create a tag by name; an existing name is reported, not duplicated."""
        try:
            data = TagCreate(name=tag_name, color=color)
        except PydanticValidationError as e:
            return TagApiResult(success=False, message=str(e.errors()[0]["msg"]))
        try:
            record = self.create(data)
        except TagValidationError as e:
            return TagApiResult(success=False, message=e.message)
        return TagApiResult(success=True, message=f"Tag '{record.name}' created")

    def rename_by_name(self, old_name: str, new_name: str) -> TagApiResult:
        """Rename a tag, carrying its color map entry along.

        This is the remote-API endpoint: it writes straight to the database
        and does not update a ``SqlTagStore`` cache or the favorites mirror.
        In-process callers go through ``TagService.rename_tag``.
        """
        existing = self.get_by_name(old_name)
        if existing is None or existing.name != old_name:
            return TagApiResult(success=False, message=f"Tag '{old_name}' not found")
        try:
            self.update(existing.id, {"name": new_name.strip()})
        except TagValidationError as e:
            return TagApiResult(success=False, message=e.message)
        self.rename_color(old_name, new_name.strip())
        return TagApiResult(success=True, message=f"Tag '{old_name}' renamed to '{new_name}'")

    def delete_by_name(self, tag_name: str) -> TagApiResult:
        """Delete a tag and its color map entry by exact name.

        This is the remote-API endpoint: it writes straight to the database
        and does not update a ``SqlTagStore`` cache or the favorites mirror.
        In-process callers go through ``TagService.delete_tag``.
        """
        existing = self.get_by_name(tag_name)
        if existing is None or existing.name != tag_name:
            return TagApiResult(success=False, message=f"Tag '{tag_name}' not found")
        self.delete(existing.id)
        self.delete_color(tag_name)
        return TagApiResult(success=True, message=f"Tag '{tag_name}' deleted")

    def remove_from_all_notes(self, tag_name: str) -> TagApiResult:
        """Strip a tag from every note, keeping the tag itself."""
        existing = self.get_by_name(tag_name)
        if existing is None or existing.name != tag_name:
            return TagApiResult(success=False, message=f"Tag '{tag_name}' not found")
        note_ids = self.find_note_ids_by_tag(tag_name)
        with self._session(
            "remove_tag_from_notes", ErrorCode.STORAGE_DELETE_FAILED
        ) as session:
            session.execute(delete(note_tags).where(note_tags.c.tag_id == existing.id))
            session.commit()
        return TagApiResult(
            success=True,
            message=f"Tag '{tag_name}' removed from {len(note_ids)} notes",
            note_ids=note_ids,
        )

    def delete_with_notes(self, tag_name: str) -> TagApiResult:
        """Delete a tag; the returned note IDs are for the notes subsystem to delete."""
        existing = self.get_by_name(tag_name)
        if existing is None or existing.name != tag_name:
            return TagApiResult(success=False, message=f"Tag '{tag_name}' not found")
        note_ids = self.find_note_ids_by_tag(tag_name)
        self.delete(existing.id)
        self.delete_color(tag_name)
        return TagApiResult(
            success=True,
            message=f"Tag '{tag_name}' and {len(note_ids)} notes deleted",
            note_ids=note_ids,
        )

    def _db_to_model(self, db_tag: DBTag) -> TagRecord:
        """Convert DBTag to TagRecord model."""
        return TagRecord(
            id=db_tag.id,
            name=db_tag.name,
            color=db_tag.color,
            parent_id=db_tag.parent_id,
            is_parent=bool(db_tag.is_parent),
            is_pinned=bool(db_tag.is_pinned),
            is_favorite=bool(db_tag.is_favorite),
            sort_order=db_tag.sort_order or 0,
        )
