import logging
from typing import List, Optional

from sqlalchemy.orm import Session as DbSession

from promptkeeper.database import store_guard
from promptkeeper.errors import ConflictError, InvalidInputError, InvalidReferenceError, NotFoundError
from promptkeeper.models.tag_models import DEFAULT_CATEGORY_COLOR, Category
from promptkeeper.schemas import CategoryCreate, CategoryUpdate

logger = logging.getLogger(__name__)

# Category Service Functions

def get_categories(db: DbSession) -> List[Category]:
    return db.query(Category).order_by(Category.name).all()

def get_category(db: DbSession, category_id: str) -> Optional[Category]:
    return db.get(Category, category_id)

def get_category_by_name(db: DbSession, name: str) -> Optional[Category]:
    return db.query(Category).filter(Category.name == name).first()

def require_category(db: DbSession, category_id: str) -> Category:
    db_category = get_category(db, category_id)
    if db_category is None:
        raise NotFoundError(f"Category {category_id} not found")
    return db_category

def validate_category_name(db: DbSession, name: Optional[str]) -> str:
    """
    Checks that a prompt's category names an existing Category.

    Categories are never created implicitly by prompt writes.

    Raises:
        InvalidInputError: If ``name`` is blank.
        InvalidReferenceError: If no Category has that name.
    """
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidInputError("Category is required")
    if get_category_by_name(db, cleaned) is None:
        raise InvalidReferenceError(f"Invalid category '{cleaned}'")
    return cleaned

def create_category(db: DbSession, category_create: CategoryCreate) -> Category:
    name = (category_create.name or "").strip()
    if not name:
        raise InvalidInputError("Category name is required")
    if get_category_by_name(db, name) is not None:
        raise ConflictError(f"Category '{name}' already exists")

    db_category = Category(name=name, color=category_create.color or DEFAULT_CATEGORY_COLOR)
    with store_guard(db, "create category"):
        db.add(db_category)
        db.commit()
    db.refresh(db_category)
    logger.info(f"Created category '{db_category.name}' ({db_category.id})")
    return db_category

def update_category(db: DbSession, category_id: str, category_update: CategoryUpdate) -> Category:
    db_category = require_category(db, category_id)

    if category_update.name is not None:
        name = category_update.name.strip()
        if not name:
            raise InvalidInputError("Category name is required")
        clash = get_category_by_name(db, name)
        if clash is not None and clash.id != db_category.id:
            raise ConflictError(f"Category '{name}' already exists")
        db_category.name = name
    if category_update.color:
        db_category.color = category_update.color

    with store_guard(db, "update category"):
        db.commit()
    db.refresh(db_category)
    return db_category

def delete_category(db: DbSession, category_id: str) -> None:
    """
    Deletes a category. Prompts keep the category name they were saved with.
    """
    db_category = require_category(db, category_id)
    with store_guard(db, "delete category"):
        db.delete(db_category)
        db.commit()
    logger.info(f"Deleted category {category_id}")
