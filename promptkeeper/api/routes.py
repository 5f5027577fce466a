from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session as DbSession # Use DbSession for type hinting

from promptkeeper.database import get_db
from promptkeeper import schemas
from promptkeeper.services import (
    PromptService,
    get_history_for_prompt,
    get_projects,
    create_project,
    update_project,
    delete_project,
    get_tags,
    create_tag,
    update_tag,
    delete_tag,
    get_categories,
    create_category,
    update_category,
    delete_category,
)
from promptkeeper.services.project_service import require_project
from promptkeeper.services.tag_service import require_tag
from promptkeeper.services.category_service import require_category

from . import settings_routes, transfer_routes
from .dependencies import get_prompt_service

router = APIRouter(prefix="/api")

router.include_router(transfer_routes.router)
router.include_router(settings_routes.router)


# --- Project Routes ---
@router.get("/projects", response_model=schemas.ProjectList, tags=["Projects"], summary="List projects", description="Lists projects, newest first, optionally filtered by a substring of the name or description.")
def list_projects_route(search: Optional[str] = None, db: DbSession = Depends(get_db)):
    projects = get_projects(db, search=search)
    return {"data": projects, "total": len(projects)}

@router.post("/projects", response_model=schemas.Project, status_code=status.HTTP_201_CREATED, tags=["Projects"], summary="Create a project")
def create_project_route(project: schemas.ProjectCreate, db: DbSession = Depends(get_db)):
    return create_project(db, project_create=project)

@router.get("/projects/{project_id}", response_model=schemas.Project, tags=["Projects"], summary="Get a project")
def read_project_route(project_id: str, db: DbSession = Depends(get_db)):
    return require_project(db, project_id)

@router.put("/projects/{project_id}", response_model=schemas.Project, tags=["Projects"], summary="Update a project", description="Updates name and description. A supplied tag_ids list replaces the project's tags.")
def update_project_route(project_id: str, project_update: schemas.ProjectUpdate, db: DbSession = Depends(get_db)):
    return update_project(db, project_id=project_id, project_update=project_update)

@router.delete("/projects/{project_id}", response_model=schemas.MessageResponse, tags=["Projects"], summary="Delete a project", description="Deletes the project together with all of its prompts, their tag links and their history.")
def delete_project_route(project_id: str, db: DbSession = Depends(get_db)):
    removed = delete_project(db, project_id=project_id)
    return {"message": "Project deleted successfully", "detail": f"{removed} prompt(s) removed"}


# --- Prompt Routes ---
@router.get("/projects/{project_id}/prompts", response_model=schemas.PromptList, tags=["Prompts"], summary="List a project's prompts", description="Lists every prompt row of the project, newest first. All filters are optional and combine.")
def list_prompts_route(
    project_id: str,
    tag: Optional[str] = None,
    version: Optional[str] = None,
    name: Optional[str] = None,
    category: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: DbSession = Depends(get_db),
    prompt_service: PromptService = Depends(get_prompt_service),
):
    prompts = prompt_service.get_prompts(
        db,
        project_id,
        tag=tag,
        version=version,
        name=name,
        category=category,
        start_date=start_date,
        end_date=end_date,
    )
    return {"data": prompts, "total": len(prompts)}

@router.post("/projects/{project_id}/prompts", response_model=schemas.Prompt, status_code=status.HTTP_201_CREATED, tags=["Prompts"], summary="Create a prompt version", description="Creates the next version of the named prompt in this project: 1.0.0 for a new name, otherwise a patch bump of the latest version.")
def create_prompt_route(
    project_id: str,
    prompt: schemas.PromptCreate,
    db: DbSession = Depends(get_db),
    prompt_service: PromptService = Depends(get_prompt_service),
):
    return prompt_service.create_prompt(db, project_id=project_id, prompt_create=prompt)

@router.get("/projects/{project_id}/sdk/prompt", response_model=schemas.SDKPromptResponse, tags=["SDK"], summary="Fetch a prompt by name", description="Returns the content and version of the newest matching row, optionally pinned to a version and/or a tag.")
def sdk_prompt_route(
    project_id: str,
    name: str = "",
    version: Optional[str] = None,
    tag: Optional[str] = None,
    db: DbSession = Depends(get_db),
    prompt_service: PromptService = Depends(get_prompt_service),
):
    db_prompt = prompt_service.get_sdk_prompt(db, project_id, name, version=version, tag=tag)
    return {"content": db_prompt.content, "version": db_prompt.version}

@router.get("/prompts/{prompt_id}", response_model=schemas.Prompt, tags=["Prompts"], summary="Get a prompt version")
def read_prompt_route(prompt_id: str, db: DbSession = Depends(get_db), prompt_service: PromptService = Depends(get_prompt_service)):
    return prompt_service.require_prompt(db, prompt_id)

@router.put("/prompts/{prompt_id}", response_model=schemas.Prompt, tags=["Prompts"], summary="Update a prompt", description="Metadata-only edits apply in place. Changed content mints a new version unless keep_version is set.")
def update_prompt_route(
    prompt_id: str,
    prompt_update: schemas.PromptUpdate,
    db: DbSession = Depends(get_db),
    prompt_service: PromptService = Depends(get_prompt_service),
):
    return prompt_service.update_prompt(db, prompt_id=prompt_id, prompt_update=prompt_update)

@router.delete("/prompts/{prompt_id}", response_model=schemas.MessageResponse, tags=["Prompts"], summary="Delete a prompt version")
def delete_prompt_route(prompt_id: str, db: DbSession = Depends(get_db), prompt_service: PromptService = Depends(get_prompt_service)):
    prompt_service.delete_prompt(db, prompt_id=prompt_id)
    return {"message": "Prompt deleted successfully"}

@router.get("/prompts/{prompt_id}/diff/{target_id}", response_model=schemas.PromptDiff, tags=["Prompts"], summary="Diff two prompt versions", description="Character-level diff from this prompt's content to the target's, with an HTML rendering.")
def diff_prompts_route(
    prompt_id: str,
    target_id: str,
    db: DbSession = Depends(get_db),
    prompt_service: PromptService = Depends(get_prompt_service),
):
    return prompt_service.diff_prompts(db, source_id=prompt_id, target_id=target_id)

@router.post("/prompts/{prompt_id}/rollback", response_model=schemas.Prompt, tags=["Prompts"], summary="Roll back to a version", description="Mints a new latest version carrying this version's content, category and tags.")
def rollback_prompt_route(prompt_id: str, db: DbSession = Depends(get_db), prompt_service: PromptService = Depends(get_prompt_service)):
    return prompt_service.rollback_prompt(db, source_id=prompt_id)

@router.get("/prompts/{prompt_id}/history", response_model=List[schemas.PromptHistory], tags=["Prompts"], summary="Get a prompt's history")
def prompt_history_route(prompt_id: str, skip: int = 0, limit: int = 100, db: DbSession = Depends(get_db)):
    return get_history_for_prompt(db, prompt_id=prompt_id, skip=skip, limit=limit)


# --- Tag Routes ---
@router.get("/tags", response_model=schemas.TagList, tags=["Tags"], summary="List tags")
def list_tags_route(db: DbSession = Depends(get_db)):
    db_tags = get_tags(db)
    return {"data": db_tags, "total": len(db_tags)}

@router.post("/tags", response_model=schemas.Tag, status_code=status.HTTP_201_CREATED, tags=["Tags"], summary="Create a tag")
def create_tag_route(tag: schemas.TagCreate, db: DbSession = Depends(get_db)):
    return create_tag(db, tag_create=tag)

@router.get("/tags/{tag_id}", response_model=schemas.Tag, tags=["Tags"], summary="Get a tag")
def read_tag_route(tag_id: str, db: DbSession = Depends(get_db)):
    return require_tag(db, tag_id)

@router.put("/tags/{tag_id}", response_model=schemas.Tag, tags=["Tags"], summary="Update a tag")
def update_tag_route(tag_id: str, tag_update: schemas.TagUpdate, db: DbSession = Depends(get_db)):
    return update_tag(db, tag_id=tag_id, tag_update=tag_update)

@router.delete("/tags/{tag_id}", response_model=schemas.MessageResponse, tags=["Tags"], summary="Delete a tag", description="Deletes the tag and detaches it from every project and prompt.")
def delete_tag_route(tag_id: str, db: DbSession = Depends(get_db)):
    delete_tag(db, tag_id=tag_id)
    return {"message": "Tag deleted successfully"}


# --- Category Routes ---
@router.get("/categories", response_model=schemas.CategoryList, tags=["Categories"], summary="List categories")
def list_categories_route(db: DbSession = Depends(get_db)):
    db_categories = get_categories(db)
    return {"data": db_categories, "total": len(db_categories)}

@router.post("/categories", response_model=schemas.Category, status_code=status.HTTP_201_CREATED, tags=["Categories"], summary="Create a category")
def create_category_route(category: schemas.CategoryCreate, db: DbSession = Depends(get_db)):
    return create_category(db, category_create=category)

@router.get("/categories/{category_id}", response_model=schemas.Category, tags=["Categories"], summary="Get a category")
def read_category_route(category_id: str, db: DbSession = Depends(get_db)):
    return require_category(db, category_id)

@router.put("/categories/{category_id}", response_model=schemas.Category, tags=["Categories"], summary="Update a category")
def update_category_route(category_id: str, category_update: schemas.CategoryUpdate, db: DbSession = Depends(get_db)):
    return update_category(db, category_id=category_id, category_update=category_update)

@router.delete("/categories/{category_id}", response_model=schemas.MessageResponse, tags=["Categories"], summary="Delete a category")
def delete_category_route(category_id: str, db: DbSession = Depends(get_db)):
    delete_category(db, category_id=category_id)
    return {"message": "Category deleted successfully"}
