from enum import Enum


class BumpClass(str, Enum):
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"


class HistoryOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    UPDATE_KEEP_VERSION = "update_keep_version"
    ROLLBACK = "rollback"


class ImportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"
    YAML = "yaml"


class ExistingPromptPolicy(str, Enum):
    """What an import does with a prompt whose id already exists."""
    UPDATE = "update"
    SKIP = "skip"


class ProviderType(str, Enum):
    ALIYUN = "aliyun"
    DEEPSEEK = "deepseek"
    DOUBAO = "doubao"
    GLM = "glm"
    KIMI = "kimi"
