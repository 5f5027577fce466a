import csv
import io
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Sequence, Union

import yaml
from sqlalchemy.orm import Session as DbSession

from promptkeeper.enums import ExportFormat
from promptkeeper.errors import InvalidInputError
from promptkeeper.metrics import EXPORTS_TOTAL
from promptkeeper.models.project_models import Project
from promptkeeper.models.prompt_models import Prompt
from promptkeeper.services.version_service import version_sort_key

logger = logging.getLogger(__name__)

CSV_HEADERS = [
    "project_id",
    "project_name",
    "project_description",
    "prompt_id",
    "prompt_name",
    "version",
    "content",
    "prompt_description",
    "category",
    "tags",
    "created_at",
]

# Column order of CSV files written before prompt_name and category existed.
LEGACY_CSV_COLUMNS = [
    "project_id",
    "project_name",
    "project_description",
    "prompt_id",
    "version",
    "content",
    "prompt_description",
    "tags",
    "created_at",
]

TAG_SEPARATOR = ";"

_MEDIA_TYPES = {
    ExportFormat.JSON: "application/json",
    ExportFormat.CSV: "text/csv",
    ExportFormat.YAML: "application/x-yaml",
}


@dataclass
class ExportPayload:
    content: bytes
    media_type: str
    filename: str


class _LiteralDumper(yaml.SafeDumper):
    pass


class _LiteralStr(str):
    """Marks a value to be written as a literal block scalar."""


def _literal_str(dumper, data):
    # PyYAML falls back to a quoted style where a block scalar cannot hold the text.
    return dumper.represent_scalar("tag:yaml.org,2002:str", str(data), style="|")


_LiteralDumper.add_representer(_LiteralStr, _literal_str)


def _isoformat(value: datetime) -> str:
    return value.isoformat() if value else ""


def _tag_dicts(tags) -> List[dict]:
    return [{"id": t.id, "name": t.name, "color": t.color} for t in tags]


def _prompt_dict(prompt: Prompt) -> dict:
    return {
        "id": prompt.id,
        "project_id": prompt.project_id,
        "name": prompt.name,
        "version": prompt.version,
        "content": prompt.content,
        "description": prompt.description,
        "category": prompt.category,
        "created_at": _isoformat(prompt.created_at),
        "tags": _tag_dicts(prompt.tags),
    }


def _project_dict(project: Project) -> dict:
    return {
        "id": project.id,
        "name": project.name,
        "description": project.description,
        "created_at": _isoformat(project.created_at),
        "updated_at": _isoformat(project.updated_at),
        "tags": _tag_dicts(project.tags),
        "prompts": [_prompt_dict(p) for p in project.prompts],
    }


def render_json(projects: Sequence[Project], export_time: datetime) -> bytes:
    data = {
        "export_time": export_time.strftime("%Y-%m-%d %H:%M:%S"),
        "projects": [_project_dict(p) for p in projects],
    }
    return json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8")


def render_csv(projects: Sequence[Project]) -> bytes:
    """
    One row per prompt; a project without prompts gets a single row with the
    prompt columns left empty.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADERS)
    for project in projects:
        if not project.prompts:
            writer.writerow([project.id, project.name, project.description] + [""] * (len(CSV_HEADERS) - 3))
            continue
        for prompt in project.prompts:
            writer.writerow([
                project.id,
                project.name,
                project.description,
                prompt.id,
                prompt.name,
                prompt.version,
                prompt.content,
                prompt.description,
                prompt.category,
                TAG_SEPARATOR.join(t.name for t in prompt.tags),
                _isoformat(prompt.created_at),
            ])
    return buffer.getvalue().encode("utf-8")


def latest_by_name(prompts: Sequence[Prompt]) -> Dict[str, Prompt]:
    """
    Picks, per prompt name, the row with the highest version by numeric
    comparison (``1.0.10`` beats ``1.0.9``). Malformed versions lose to any
    well-formed one; remaining ties go to the newer row.
    """
    latest: Dict[str, Prompt] = {}
    for prompt in prompts:
        current = latest.get(prompt.name)
        key = (version_sort_key(prompt.version), prompt.created_at or datetime.min)
        if current is None or key > (version_sort_key(current.version), current.created_at or datetime.min):
            latest[prompt.name] = prompt
    return latest


def render_yaml(projects: Sequence[Project]) -> bytes:
    """
    A flat ``name: content`` mapping of each prompt's latest version, keys
    sorted. Projects later in ``projects`` win when names collide.
    """
    export_data: Dict[str, str] = {}
    for project in projects:
        for name, prompt in latest_by_name(project.prompts).items():
            export_data[name] = _LiteralStr(prompt.content)
    text = yaml.dump(
        export_data,
        Dumper=_LiteralDumper,
        sort_keys=True,
        allow_unicode=True,
        default_flow_style=False,
    )
    return text.encode("utf-8")


def load_projects(db: DbSession, project_ids: Sequence[str]) -> List[Project]:
    """Loads the projects in request order, ignoring unknown ids."""
    found = {p.id: p for p in db.query(Project).filter(Project.id.in_(list(project_ids))).all()}
    missing = [pid for pid in project_ids if pid not in found]
    if missing:
        logger.warning(f"Export skipped unknown project ids: {missing}")
    ordered = []
    seen = set()
    for pid in project_ids:
        if pid in found and pid not in seen:
            ordered.append(found[pid])
            seen.add(pid)
    return ordered


def export_projects(db: DbSession, project_ids: Sequence[str], fmt: Union[str, ExportFormat]) -> ExportPayload:
    """
    Serializes the given projects.

    Args:
        db: The SQLAlchemy database session.
        project_ids: Projects to export, in order.
        fmt: ``json``, ``csv`` or ``yaml``.

    Returns:
        An ExportPayload with the bytes, media type and a suggested filename.
    """
    try:
        export_format = fmt if isinstance(fmt, ExportFormat) else ExportFormat(fmt)
    except ValueError:
        raise InvalidInputError(f"Unsupported export format: {fmt}")

    projects = load_projects(db, project_ids)
    now = datetime.now()
    if export_format == ExportFormat.JSON:
        content = render_json(projects, now)
    elif export_format == ExportFormat.CSV:
        content = render_csv(projects)
    else:
        content = render_yaml(projects)

    EXPORTS_TOTAL.labels(format=export_format.value).inc()
    logger.info(f"Exported {len(projects)} project(s) as {export_format.value} ({len(content)} bytes)")
    return ExportPayload(
        content=content,
        media_type=_MEDIA_TYPES[export_format],
        filename=f"prompts_export_{now.strftime('%Y%m%d_%H%M%S')}.{export_format.value}",
    )
