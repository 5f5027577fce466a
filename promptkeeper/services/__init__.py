from .version_service import (
    next_version,
    compare_versions,
    parse_version,
    is_valid_version,
    version_sort_key,
)

from .diff_service import DiffService
from .history_service import record_history, get_history_for_prompt
from .lineage_locks import LineageLockRegistry
from .prompt_service import PromptService
from .import_service import ImportService, parse_json_batch, parse_csv_batch
from .export_service import ExportPayload, export_projects

from .project_service import (
    get_projects,
    get_project,
    create_project,
    update_project,
    delete_project,
)

from .tag_service import (
    get_tags,
    get_tag,
    create_tag,
    update_tag,
    delete_tag,
)

from .category_service import (
    get_categories,
    get_category,
    create_category,
    update_category,
    delete_category,
)

from .settings_service import (
    get_settings_map,
    get_setting_value,
    update_settings,
)

__all__ = [
    "next_version",
    "compare_versions",
    "parse_version",
    "is_valid_version",
    "version_sort_key",
    "DiffService",
    "record_history",
    "get_history_for_prompt",
    "LineageLockRegistry",
    "PromptService",
    "ImportService",
    "parse_json_batch",
    "parse_csv_batch",
    "ExportPayload",
    "export_projects",
    "get_projects",
    "get_project",
    "create_project",
    "update_project",
    "delete_project",
    "get_tags",
    "get_tag",
    "create_tag",
    "update_tag",
    "delete_tag",
    "get_categories",
    "get_category",
    "create_category",
    "update_category",
    "delete_category",
    "get_settings_map",
    "get_setting_value",
    "update_settings",
]
