from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional, Dict, Union

from promptkeeper.enums import BumpClass, ExportFormat

# Schemas for Tags and Categories

class TagBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: Optional[str] = Field(None, max_length=7, description="Hex color, e.g. #3b82f6")

class TagCreate(TagBase):
    pass

class TagUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    color: Optional[str] = Field(None, max_length=7)

class Tag(TagBase):
    id: str
    color: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class TagList(BaseModel):
    data: List[Tag]
    total: int

class CategoryBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: Optional[str] = Field(None, max_length=7)

class CategoryCreate(CategoryBase):
    pass

class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    color: Optional[str] = Field(None, max_length=7)

class Category(CategoryBase):
    id: str
    color: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class CategoryList(BaseModel):
    data: List[Category]
    total: int

# Schemas for Projects

class ProjectBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""

class ProjectCreate(ProjectBase):
    tag_ids: List[str] = Field(default_factory=list)

class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    tag_ids: Optional[List[str]] = None

class Project(ProjectBase):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    tags: List[Tag] = []

    class Config:
        from_attributes = True

class ProjectList(BaseModel):
    data: List[Project]
    total: int

# Schemas for Prompts

class PromptCreate(BaseModel):
    name: str = Field(..., max_length=100)
    content: str
    category: str = Field(..., max_length=50)
    description: str = ""
    tag_ids: List[str] = Field(default_factory=list)

class PromptUpdate(BaseModel):
    content: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=50)
    # None leaves tags alone; an empty list clears them.
    tag_ids: Optional[List[str]] = None
    # Unrecognised bump classes fall back to a patch bump.
    bump: str = Field(BumpClass.PATCH.value, description="major, minor or patch")
    keep_version: bool = False

class Prompt(BaseModel):
    id: str
    project_id: str
    name: str
    version: str
    content: str
    description: str = ""
    category: str = ""
    created_at: Optional[datetime] = None
    tags: List[Tag] = []

    class Config:
        from_attributes = True

class PromptList(BaseModel):
    data: List[Prompt]
    total: int

class PromptHistory(BaseModel):
    id: str
    prompt_id: str
    operation: str
    old_content: str = ""
    new_content: str = ""
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class SDKPromptResponse(BaseModel):
    content: str
    version: str

# Diff schemas

class DiffResult(BaseModel):
    additions: int
    deletions: int
    change_rate: float
    diff_html: str

class PromptDiff(BaseModel):
    source_version: str
    target_version: str
    diff: DiffResult

# Import / export schemas

class ImportTag(BaseModel):
    name: str
    color: Optional[str] = None

class ImportPrompt(BaseModel):
    id: Optional[str] = None
    name: str = ""
    version: str = ""
    content: str = ""
    description: str = ""
    category: str = ""
    tags: List[ImportTag] = Field(default_factory=list)
    created_at: Optional[datetime] = None

class ImportProject(BaseModel):
    id: Optional[str] = None
    name: str = ""
    description: str = ""
    tags: List[ImportTag] = Field(default_factory=list)
    prompts: List[ImportPrompt] = Field(default_factory=list)

class ImportBatch(BaseModel):
    projects: List[ImportProject] = Field(default_factory=list)
    # Row-level problems found while parsing; carried into the report.
    errors: List[str] = Field(default_factory=list)
    rejected: int = 0

class ImportReport(BaseModel):
    success: bool = True
    message: str = "Import completed"
    imported: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    projects: int = 0

class ExportRequest(BaseModel):
    project_ids: List[str] = Field(..., min_length=1)
    format: ExportFormat

# Settings and LLM schemas

class ChatMessageSchema(BaseModel):
    role: str
    content: str

class PromptTestRequest(BaseModel):
    messages: List[ChatMessageSchema]
    stream: bool = False
    provider: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None

class PromptTestResponse(BaseModel):
    response: str

class OptimizePromptRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    stream: bool = False
    provider: Optional[str] = None

class OptimizePromptResponse(BaseModel):
    optimized_prompt: str

class HealthResponse(BaseModel):
    status: str
    version: str

class MessageResponse(BaseModel):
    message: str
    detail: Optional[Union[str, Dict[str, str]]] = None
