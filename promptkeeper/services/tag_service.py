import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import delete
from sqlalchemy.orm import Session as DbSession

from promptkeeper.database import store_guard
from promptkeeper.errors import ConflictError, InvalidInputError, InvalidReferenceError, NotFoundError
from promptkeeper.models.tag_models import DEFAULT_TAG_COLOR, Tag, project_tags, prompt_tags
from promptkeeper.schemas import TagCreate, TagUpdate

logger = logging.getLogger(__name__)

# Tag Service Functions

def get_tags(db: DbSession) -> List[Tag]:
    return db.query(Tag).order_by(Tag.name).all()

def get_tag(db: DbSession, tag_id: str) -> Optional[Tag]:
    return db.get(Tag, tag_id)

def get_tag_by_name(db: DbSession, name: str) -> Optional[Tag]:
    return db.query(Tag).filter(Tag.name == name).first()

def require_tag(db: DbSession, tag_id: str) -> Tag:
    db_tag = get_tag(db, tag_id)
    if db_tag is None:
        raise NotFoundError(f"Tag {tag_id} not found")
    return db_tag

def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidInputError("Tag name is required")
    return cleaned

def create_tag(db: DbSession, tag_create: TagCreate) -> Tag:
    """
    Creates a tag. Tag names are unique; a duplicate raises ConflictError.
    """
    name = _clean_name(tag_create.name)
    if get_tag_by_name(db, name) is not None:
        raise ConflictError(f"Tag '{name}' already exists")

    db_tag = Tag(name=name, color=tag_create.color or DEFAULT_TAG_COLOR)
    with store_guard(db, "create tag"):
        db.add(db_tag)
        db.commit()
    db.refresh(db_tag)
    logger.info(f"Created tag '{db_tag.name}' ({db_tag.id})")
    return db_tag

def update_tag(db: DbSession, tag_id: str, tag_update: TagUpdate) -> Tag:
    db_tag = require_tag(db, tag_id)

    if tag_update.name is not None:
        name = _clean_name(tag_update.name)
        clash = get_tag_by_name(db, name)
        if clash is not None and clash.id != db_tag.id:
            raise ConflictError(f"Tag '{name}' already exists")
        db_tag.name = name
    if tag_update.color:
        db_tag.color = tag_update.color

    with store_guard(db, "update tag"):
        db.commit()
    db.refresh(db_tag)
    return db_tag

def delete_tag(db: DbSession, tag_id: str) -> None:
    """Deletes a tag and its project and prompt associations."""
    require_tag(db, tag_id)
    with store_guard(db, "delete tag"):
        db.execute(delete(prompt_tags).where(prompt_tags.c.tag_id == tag_id))
        db.execute(delete(project_tags).where(project_tags.c.tag_id == tag_id))
        db.execute(delete(Tag).where(Tag.id == tag_id))
        db.commit()
    logger.info(f"Deleted tag {tag_id}")

def resolve_tag_ids(db: DbSession, tag_ids: Iterable[str]) -> List[Tag]:
    """
    Loads the tags for ``tag_ids`` in the order given.

    Duplicated ids collapse to one tag. Any unknown id rejects the whole set
    with InvalidReferenceError listing the unknown ids.
    """
    unique_ids = list(dict.fromkeys(tag_ids))
    if not unique_ids:
        return []
    found = {t.id: t for t in db.query(Tag).filter(Tag.id.in_(unique_ids)).all()}
    missing = [tag_id for tag_id in unique_ids if tag_id not in found]
    if missing:
        raise InvalidReferenceError(f"Unknown tag ids: {', '.join(missing)}")
    return [found[tag_id] for tag_id in unique_ids]

def get_or_create_tags(db: DbSession, specs: Iterable[Tuple[str, Optional[str]]]) -> List[Tag]:
    """
    Resolves ``(name, color)`` pairs to tags, creating unknown names.

    Runs inside the caller's transaction: new tags are flushed, not committed.
    """
    tags: List[Tag] = []
    seen = set()
    for name, color in specs:
        name = (name or "").strip()
        if not name or name in seen:
            continue
        seen.add(name)
        db_tag = get_tag_by_name(db, name)
        if db_tag is None:
            db_tag = Tag(name=name, color=color or DEFAULT_TAG_COLOR)
            db.add(db_tag)
            db.flush()
            logger.info(f"Auto-created tag '{name}'")
        tags.append(db_tag)
    return tags
