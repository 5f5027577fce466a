import logging
from typing import List, Optional

from sqlalchemy import delete, or_
from sqlalchemy.orm import Session as DbSession

from promptkeeper.database import store_guard
from promptkeeper.errors import InvalidInputError, NotFoundError
from promptkeeper.models.project_models import Project
from promptkeeper.models.prompt_models import Prompt, PromptHistory
from promptkeeper.models.tag_models import project_tags, prompt_tags
from promptkeeper.schemas import ProjectCreate, ProjectUpdate
from promptkeeper.services.tag_service import resolve_tag_ids

logger = logging.getLogger(__name__)

# Project Service Functions

def get_projects(db: DbSession, search: Optional[str] = None) -> List[Project]:
    """
    Lists projects, optionally filtered by a substring of name or description.
    """
    query = db.query(Project)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Project.name.like(pattern), Project.description.like(pattern)))
    return query.order_by(Project.created_at.desc()).all()

def get_project(db: DbSession, project_id: str) -> Optional[Project]:
    return db.get(Project, project_id)

def require_project(db: DbSession, project_id: str) -> Project:
    db_project = get_project(db, project_id)
    if db_project is None:
        raise NotFoundError(f"Project {project_id} not found")
    return db_project

def create_project(db: DbSession, project_create: ProjectCreate) -> Project:
    name = (project_create.name or "").strip()
    if not name:
        raise InvalidInputError("Project name is required")
    tags = resolve_tag_ids(db, project_create.tag_ids)

    db_project = Project(name=name, description=project_create.description or "", tags=tags)
    with store_guard(db, "create project"):
        db.add(db_project)
        db.commit()
    db.refresh(db_project)
    logger.info(f"Created project '{db_project.name}' ({db_project.id})")
    return db_project

def update_project(db: DbSession, project_id: str, project_update: ProjectUpdate) -> Project:
    """
    Applies the supplied fields; ``tag_ids`` replaces the tag set when given.
    """
    db_project = require_project(db, project_id)
    tags = None
    if project_update.tag_ids is not None:
        tags = resolve_tag_ids(db, project_update.tag_ids)

    if project_update.name is not None:
        name = project_update.name.strip()
        if not name:
            raise InvalidInputError("Project name is required")
        db_project.name = name
    if project_update.description is not None:
        db_project.description = project_update.description
    if tags is not None:
        db_project.tags = tags

    with store_guard(db, "update project"):
        db.commit()
    db.refresh(db_project)
    return db_project

def delete_project(db: DbSession, project_id: str) -> int:
    """
    Deletes a project with its prompts, their tag links and history rows, and
    the project's own tag links, in one transaction.

    Association rows go first so no join-table row outlives its owner even on
    stores that do not cascade.

    Returns:
        The number of prompt rows removed.
    """
    require_project(db, project_id)
    prompt_ids = [row[0] for row in db.query(Prompt.id).filter(Prompt.project_id == project_id).all()]

    with store_guard(db, "delete project"):
        if prompt_ids:
            db.execute(delete(prompt_tags).where(prompt_tags.c.prompt_id.in_(prompt_ids)))
            db.execute(delete(PromptHistory).where(PromptHistory.prompt_id.in_(prompt_ids)))
            db.execute(delete(Prompt).where(Prompt.id.in_(prompt_ids)))
        db.execute(delete(project_tags).where(project_tags.c.project_id == project_id))
        db.execute(delete(Project).where(Project.id == project_id))
        db.commit()

    logger.info(f"Deleted project {project_id} with {len(prompt_ids)} prompt(s)")
    return len(prompt_ids)
