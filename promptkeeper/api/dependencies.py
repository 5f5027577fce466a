from fastapi import Request

from promptkeeper.services.import_service import ImportService
from promptkeeper.services.prompt_service import PromptService
from promptkeeper.utils.llm_utils import ProviderRegistry


def get_prompt_service(request: Request) -> PromptService:
    """The PromptService built at startup; it owns the lineage locks."""
    return request.app.state.prompt_service


def get_import_service(request: Request) -> ImportService:
    return request.app.state.import_service


def get_provider_registry(request: Request) -> ProviderRegistry:
    return request.app.state.provider_registry
