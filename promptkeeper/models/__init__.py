from promptkeeper.models.base import Base
from .tag_models import Tag, Category, project_tags, prompt_tags
from .project_models import Project
from .prompt_models import Prompt, PromptHistory
from .settings_models import Setting

__all__ = [
    "Base",
    "Tag",
    "Category",
    "project_tags",
    "prompt_tags",
    "Project",
    "Prompt",
    "PromptHistory",
    "Setting",
]
