import logging
from datetime import datetime
from typing import Callable, List, Optional, Union

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session as DbSession

from promptkeeper.config import settings
from promptkeeper.database import store_guard
from promptkeeper.enums import BumpClass, HistoryOperation
from promptkeeper.errors import ConflictError, InvalidInputError, NotFoundError, StoreFailureError
from promptkeeper.metrics import PROMPT_VERSIONS_MINTED_TOTAL, VERSION_MINT_CONFLICTS_TOTAL
from promptkeeper.models.project_models import Project
from promptkeeper.models.prompt_models import Prompt, PromptHistory
from promptkeeper.models.tag_models import Tag, prompt_tags
from promptkeeper.schemas import PromptCreate, PromptDiff, PromptUpdate
from promptkeeper.services.category_service import validate_category_name
from promptkeeper.services.diff_service import DiffService, ensure_text
from promptkeeper.services.history_service import record_history
from promptkeeper.services.lineage_locks import LineageLockRegistry
from promptkeeper.services.tag_service import resolve_tag_ids
from promptkeeper.services.version_service import next_version, version_sort_key

logger = logging.getLogger(__name__)


def _is_version_collision(error: IntegrityError) -> bool:
    message = str(error.orig) if error.orig is not None else str(error)
    if "uq_prompt_lineage_version" in message:
        return True
    lowered = message.lower()
    # SQLite names the columns instead of the constraint.
    return ("unique" in lowered or "duplicate" in lowered) and "version" in lowered


def newest_prompt(query: Query) -> Optional[Prompt]:
    """
    Returns the newest row of ``query`` by creation time.

    Rows sharing the newest timestamp are ordered by version, highest wins.
    """
    newest = query.order_by(Prompt.created_at.desc()).first()
    if newest is None:
        return None
    ties = query.filter(Prompt.created_at == newest.created_at).all()
    return max(ties, key=lambda p: version_sort_key(p.version))


class PromptService:
    """
    Service layer for prompt lineages.

    A lineage is every Prompt row sharing a ``(project_id, name)`` pair. Each
    row is an immutable snapshot: editing content mints a new row with the
    next version unless the caller explicitly asks to keep the version. Every
    content mutation appends a PromptHistory row in the same transaction.

    Version minting is read-then-write, so it runs under a per-lineage lock
    from ``lock_registry``. Writers outside this process are caught by the
    ``uq_prompt_lineage_version`` constraint; the insert is then retried with
    a recomputed version up to ``max_retries`` times before ConflictError.

    Database sessions (DbSession) are passed to each method.
    """

    def __init__(
        self,
        lock_registry: Optional[LineageLockRegistry] = None,
        diff_service: Optional[DiffService] = None,
        max_retries: Optional[int] = None,
    ):
        self.locks = lock_registry if lock_registry is not None else LineageLockRegistry()
        self.diff_service = diff_service if diff_service is not None else DiffService(timeout=settings.DIFF_TIMEOUT)
        retries = settings.VERSION_MINT_MAX_RETRIES if max_retries is None else max_retries
        self.max_retries = max(1, retries)

    # --- Reads ---

    def get_prompt(self, db: DbSession, prompt_id: str) -> Optional[Prompt]:
        return db.get(Prompt, prompt_id)

    def require_prompt(self, db: DbSession, prompt_id: str) -> Prompt:
        db_prompt = self.get_prompt(db, prompt_id)
        if db_prompt is None:
            raise NotFoundError(f"Prompt {prompt_id} not found")
        return db_prompt

    def get_prompts(
        self,
        db: DbSession,
        project_id: str,
        tag: Optional[str] = None,
        version: Optional[str] = None,
        name: Optional[str] = None,
        category: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[Prompt]:
        """
        Lists a project's prompt rows, newest first.

        Args:
            db: The SQLAlchemy database session.
            project_id: The owning project.
            tag: Only rows carrying a tag with this name.
            version: Only rows with exactly this version string.
            name: Only rows of this lineage name.
            category: Only rows in this category.
            start_date: Only rows created at or after this time.
            end_date: Only rows created at or before this time.

        Returns:
            A list of Prompt objects.

        Raises:
            NotFoundError: If the project does not exist.
        """
        if db.get(Project, project_id) is None:
            raise NotFoundError(f"Project {project_id} not found")

        query = db.query(Prompt).filter(Prompt.project_id == project_id)
        if tag:
            query = query.join(Prompt.tags).filter(Tag.name == tag)
        if version:
            query = query.filter(Prompt.version == version)
        if name:
            query = query.filter(Prompt.name == name)
        if category:
            query = query.filter(Prompt.category == category)
        if start_date:
            query = query.filter(Prompt.created_at >= start_date)
        if end_date:
            query = query.filter(Prompt.created_at <= end_date)
        return query.order_by(Prompt.created_at.desc()).all()

    def get_lineage(self, db: DbSession, project_id: str, name: str) -> List[Prompt]:
        """Returns every row of a lineage, oldest first."""
        return (
            db.query(Prompt)
            .filter(Prompt.project_id == project_id, Prompt.name == name)
            .order_by(Prompt.created_at.asc())
            .all()
        )

    def get_latest_in_lineage(self, db: DbSession, project_id: str, name: str) -> Optional[Prompt]:
        query = db.query(Prompt).filter(Prompt.project_id == project_id, Prompt.name == name)
        return newest_prompt(query)

    def get_sdk_prompt(
        self,
        db: DbSession,
        project_id: str,
        name: str,
        version: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> Prompt:
        """
        Resolves the row an SDK client asked for: the newest row of the
        lineage, optionally narrowed to a version and/or a tag name.
        """
        if not name:
            raise InvalidInputError("prompt name is required")

        query = db.query(Prompt).filter(Prompt.project_id == project_id, Prompt.name == name)
        if tag:
            query = query.join(Prompt.tags).filter(Tag.name == tag)
        if version:
            query = query.filter(Prompt.version == version)

        db_prompt = newest_prompt(query)
        if db_prompt is None:
            raise NotFoundError(f"Prompt '{name}' not found")
        return db_prompt

    # --- Version minting ---

    def mint_version(
        self, db: DbSession, project_id: str, name: str, bump: Union[str, BumpClass, None]
    ) -> str:
        latest = self.get_latest_in_lineage(db, project_id, name)
        candidate = next_version(latest.version if latest is not None else None, bump)

        # The newest row need not hold the highest version (imports keep their
        # timestamps), so step past versions the lineage already holds.
        taken = {
            row[0]
            for row in db.query(Prompt.version)
            .filter(Prompt.project_id == project_id, Prompt.name == name)
            .all()
        }
        while candidate in taken:
            candidate = next_version(candidate, BumpClass.PATCH)
        return candidate

    def _insert_new_version(
        self,
        db: DbSession,
        project_id: str,
        name: str,
        bump: Union[str, BumpClass, None],
        build_row: Callable[[str], Prompt],
        operation: HistoryOperation,
        old_content: str,
    ) -> Prompt:
        with self.locks.hold(project_id, name):
            for attempt in range(1, self.max_retries + 1):
                version = self.mint_version(db, project_id, name, bump)
                db_prompt = build_row(version)
                try:
                    db.add(db_prompt)
                    db.flush()
                    record_history(db, db_prompt.id, operation, old_content, db_prompt.content)
                    db.commit()
                except IntegrityError as e:
                    db.rollback()
                    if not _is_version_collision(e):
                        logger.error(f"Integrity error saving prompt '{name}': {e}", exc_info=True)
                        raise StoreFailureError("Failed to save prompt") from e
                    VERSION_MINT_CONFLICTS_TOTAL.inc()
                    logger.warning(
                        f"Version {version} of ({project_id}, {name}) was taken concurrently "
                        f"(attempt {attempt}/{self.max_retries}); recomputing."
                    )
                    continue
                except SQLAlchemyError as e:
                    db.rollback()
                    logger.error(f"Store failure saving prompt '{name}': {e}", exc_info=True)
                    raise StoreFailureError("Failed to save prompt") from e

                db.refresh(db_prompt)
                PROMPT_VERSIONS_MINTED_TOTAL.labels(operation=operation.value).inc()
                logger.info(
                    f"Minted version {db_prompt.version} of ({project_id}, {name}) "
                    f"as prompt {db_prompt.id} [{operation.value}]"
                )
                return db_prompt

        raise ConflictError(
            f"Could not mint a unique version for prompt '{name}' after {self.max_retries} attempts"
        )

    # --- Mutations ---

    def create_prompt(self, db: DbSession, project_id: str, prompt_create: PromptCreate) -> Prompt:
        """
        Creates the next version of the ``(project_id, name)`` lineage.

        The first row of a lineage is ``1.0.0``; later creates patch-bump the
        latest row. The row, its tag links and a ``create`` history record are
        committed together.

        Raises:
            InvalidInputError: Blank name or content, or undecodable content.
            NotFoundError: If the project does not exist.
            InvalidReferenceError: Unknown category or any unknown tag id.
            ConflictError: If no unique version could be minted.
            StoreFailureError: If the store failed; nothing was written.
        """
        name = (prompt_create.name or "").strip()
        if not name:
            raise InvalidInputError("Prompt name is required")
        content = ensure_text(prompt_create.content, "Prompt")
        if not content.strip():
            raise InvalidInputError("Prompt content is required")
        if db.get(Project, project_id) is None:
            raise NotFoundError(f"Project {project_id} not found")
        category = validate_category_name(db, prompt_create.category)
        tags = resolve_tag_ids(db, prompt_create.tag_ids)
        description = prompt_create.description or ""

        def build(version: str) -> Prompt:
            return Prompt(
                project_id=project_id,
                name=name,
                version=version,
                content=content,
                category=category,
                description=description,
                tags=list(tags),
            )

        return self._insert_new_version(
            db, project_id, name, BumpClass.PATCH, build, HistoryOperation.CREATE, old_content=""
        )

    def update_prompt(self, db: DbSession, prompt_id: str, prompt_update: PromptUpdate) -> Prompt:
        """
        Applies an edit to a prompt row.

        Content counts as changed only when supplied, non-empty and different
        from the row's content. Then:

        * unchanged: supplied description, category and tags are applied in
          place. No history row is written for metadata-only edits.
        * changed with ``keep_version``: content and supplied metadata are
          changed in place and an ``update_keep_version`` history row records
          old and new content.
        * changed otherwise: a new row is minted from the lineage's latest
          version with ``bump``. Unsupplied category and description are
          inherited; tags are the supplied set, or the source row's tags when
          ``tag_ids`` is omitted. The ``update`` history row points at the new
          row. The source row is left untouched.

        Returns:
            The updated row, or the newly minted row.
        """
        source = self.require_prompt(db, prompt_id)

        category = None
        if prompt_update.category:
            category = validate_category_name(db, prompt_update.category)
        tags = None
        if prompt_update.tag_ids is not None:
            tags = resolve_tag_ids(db, prompt_update.tag_ids)
        new_content = None
        if prompt_update.content is not None:
            new_content = ensure_text(prompt_update.content, "Prompt")

        content_changed = bool(new_content) and new_content != source.content

        if not content_changed:
            self._apply_metadata(source, prompt_update.description, category, tags)
            with store_guard(db, "update prompt"):
                db.commit()
            db.refresh(source)
            return source

        if prompt_update.keep_version:
            old_content = source.content
            source.content = new_content
            self._apply_metadata(source, prompt_update.description, category, tags)
            with store_guard(db, "update prompt"):
                record_history(db, source.id, HistoryOperation.UPDATE_KEEP_VERSION, old_content, new_content)
                db.commit()
            db.refresh(source)
            logger.info(f"Updated prompt {source.id} in place at version {source.version}")
            return source

        project_id = source.project_id
        name = source.name
        old_content = source.content
        new_description = prompt_update.description if prompt_update.description is not None else source.description
        new_category = category or source.category
        new_tags = tags if tags is not None else list(source.tags)

        def build(version: str) -> Prompt:
            return Prompt(
                project_id=project_id,
                name=name,
                version=version,
                content=new_content,
                category=new_category,
                description=new_description,
                tags=list(new_tags),
            )

        return self._insert_new_version(
            db, project_id, name, prompt_update.bump, build, HistoryOperation.UPDATE, old_content=old_content
        )

    @staticmethod
    def _apply_metadata(
        db_prompt: Prompt, description: Optional[str], category: Optional[str], tags: Optional[List[Tag]]
    ) -> None:
        if description is not None:
            db_prompt.description = description
        if category is not None:
            db_prompt.category = category
        if tags is not None:
            db_prompt.tags = tags

    def rollback_prompt(self, db: DbSession, source_id: str) -> Prompt:
        """
        Restores an earlier version by minting a new row with its content.

        The new version is a patch bump off the lineage's latest row, whatever
        version the source is. Content, category and tags are copied from the
        source; nothing existing is modified.
        """
        source = self.require_prompt(db, source_id)
        project_id = source.project_id
        name = source.name
        content = source.content
        category = source.category
        tags = list(source.tags)
        description = f"Rollback to version {source.version}"

        def build(version: str) -> Prompt:
            return Prompt(
                project_id=project_id,
                name=name,
                version=version,
                content=content,
                category=category,
                description=description,
                tags=list(tags),
            )

        return self._insert_new_version(
            db, project_id, name, BumpClass.PATCH, build, HistoryOperation.ROLLBACK, old_content=""
        )

    def diff_prompts(self, db: DbSession, source_id: str, target_id: str) -> PromptDiff:
        """Diffs the content of two prompt rows, source as the old text."""
        source = self.require_prompt(db, source_id)
        target = self.require_prompt(db, target_id)
        result = self.diff_service.compare_texts(source.content, target.content)
        return PromptDiff(
            source_version=source.version,
            target_version=target.version,
            diff=result,
        )

    def delete_prompt(self, db: DbSession, prompt_id: str) -> None:
        """
        Deletes one prompt row with its tag links and history, in one
        transaction.
        """
        self.require_prompt(db, prompt_id)
        with store_guard(db, "delete prompt"):
            db.execute(delete(prompt_tags).where(prompt_tags.c.prompt_id == prompt_id))
            db.execute(delete(PromptHistory).where(PromptHistory.prompt_id == prompt_id))
            db.execute(delete(Prompt).where(Prompt.id == prompt_id))
            db.commit()
        logger.info(f"Deleted prompt {prompt_id}")
