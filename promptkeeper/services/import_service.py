"""
Import of exported project/prompt graphs.

Two payload shapes are understood:

* JSON, the structure written by the JSON exporter: ``{"projects": [...]}``
  with nested ``tags`` and ``prompts``.
* CSV, flat rows of one prompt each. Both the current header (with
  ``prompt_name`` and ``category`` columns) and the older nine-column layout
  without them are accepted; the older layout names prompts after their
  project.

Parsing turns either into an ImportBatch; ``ImportService.reconcile`` merges
the batch into the store one project per transaction.
"""
import csv
import io
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Union

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DbSession

from promptkeeper.config import Settings, settings as default_settings
from promptkeeper.enums import BumpClass, ExistingPromptPolicy, HistoryOperation, ImportFormat
from promptkeeper.errors import InvalidInputError
from promptkeeper.metrics import IMPORT_ROWS_TOTAL
from promptkeeper.models.base import generate_id, utcnow
from promptkeeper.models.project_models import Project
from promptkeeper.models.prompt_models import Prompt
from promptkeeper.schemas import ImportBatch, ImportProject, ImportPrompt, ImportReport, ImportTag
from promptkeeper.services.category_service import get_category_by_name
from promptkeeper.services.diff_service import ensure_text
from promptkeeper.services.export_service import CSV_HEADERS, LEGACY_CSV_COLUMNS
from promptkeeper.services.history_service import record_history
from promptkeeper.services.prompt_service import PromptService
from promptkeeper.services.tag_service import get_or_create_tags
from promptkeeper.services.version_service import is_valid_version

logger = logging.getLogger(__name__)

_TIMESTAMP_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parses an exported timestamp into a naive UTC datetime.

    Returns None for blank or unparseable values; the row then gets the
    import time.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = None
            for fmt in _TIMESTAMP_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            if parsed is None:
                return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _normalize_tags(raw_tags: Any) -> List[Dict[str, Any]]:
    if raw_tags is None:
        return []
    if not isinstance(raw_tags, list):
        raise ValueError("tags must be a list")
    tags = []
    for raw in raw_tags:
        if isinstance(raw, str):
            tags.append({"name": raw})
        elif isinstance(raw, dict) and raw.get("name"):
            tags.append({"name": _text(raw.get("name")), "color": _text(raw.get("color")) or None})
    return tags


def _normalize_prompt(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": _text(raw.get("id")) or None,
        "name": _text(raw.get("name")),
        "version": _text(raw.get("version")),
        "content": _text(raw.get("content")),
        "description": _text(raw.get("description")),
        "category": _text(raw.get("category")),
        "tags": _normalize_tags(raw.get("tags")),
        "created_at": parse_timestamp(raw.get("created_at")),
    }


def parse_json_batch(payload: Union[bytes, str]) -> ImportBatch:
    """
    Parses a JSON export into an ImportBatch.

    Malformed projects and prompts become batch errors; the rest of the
    batch is still returned.

    Raises:
        InvalidInputError: If the payload is not a JSON object with a
            ``projects`` list.
    """
    try:
        text = payload.decode("utf-8-sig") if isinstance(payload, (bytes, bytearray)) else payload
        data = json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        raise InvalidInputError(f"Invalid JSON format: {e}")
    if not isinstance(data, dict) or not isinstance(data.get("projects", []), list):
        raise InvalidInputError("Invalid JSON format: expected an object with a 'projects' list")

    batch = ImportBatch()
    for p_index, raw_project in enumerate(data.get("projects") or [], start=1):
        if not isinstance(raw_project, dict):
            batch.errors.append(f"Project #{p_index}: not an object")
            continue
        raw_prompts = raw_project.get("prompts")
        if raw_prompts is not None and not isinstance(raw_prompts, list):
            batch.errors.append(f"Project #{p_index}: 'prompts' is not a list")
            batch.rejected += 1
            continue
        prompts = []
        for r_index, raw_prompt in enumerate(raw_prompts or [], start=1):
            if not isinstance(raw_prompt, dict):
                batch.errors.append(f"Project #{p_index} prompt #{r_index}: not an object")
                batch.rejected += 1
                continue
            try:
                prompts.append(ImportPrompt.model_validate(_normalize_prompt(raw_prompt)))
            except ValidationError as e:
                batch.errors.append(f"Project #{p_index} prompt #{r_index}: invalid record ({e.error_count()} error(s))")
                batch.rejected += 1
            except ValueError as e:
                batch.errors.append(f"Project #{p_index} prompt #{r_index}: invalid record ({e})")
                batch.rejected += 1
        try:
            project = ImportProject(
                id=_text(raw_project.get("id")) or None,
                name=_text(raw_project.get("name")),
                description=_text(raw_project.get("description")),
                tags=[ImportTag(**t) for t in _normalize_tags(raw_project.get("tags"))],
                prompts=prompts,
            )
        except ValueError as e:
            reason = f"{e.error_count()} error(s)" if isinstance(e, ValidationError) else str(e)
            batch.errors.append(f"Project #{p_index}: invalid record ({reason})")
            batch.rejected += len(prompts)
            continue
        batch.projects.append(project)
    return batch


def _split_tags(value: str) -> List[ImportTag]:
    return [ImportTag(name=name.strip()) for name in (value or "").split(";") if name.strip()]


def parse_csv_batch(payload: Union[bytes, str]) -> ImportBatch:
    """
    Parses a CSV export into an ImportBatch grouped by project id.

    Short or incomplete rows become row errors in the batch.

    Raises:
        InvalidInputError: If the payload is not UTF-8 or has no usable header.
    """
    try:
        text = payload.decode("utf-8-sig") if isinstance(payload, (bytes, bytearray)) else payload
    except UnicodeDecodeError as e:
        raise InvalidInputError(f"CSV file is not valid UTF-8: {e}")

    reader = csv.reader(io.StringIO(text, newline=""))
    try:
        header = next(reader)
    except StopIteration:
        raise InvalidInputError("Empty or invalid CSV file")
    except csv.Error as e:
        raise InvalidInputError(f"Empty or invalid CSV file: {e}")

    normalized = [h.strip().lower() for h in header]
    if set(CSV_HEADERS).issubset(normalized):
        positions = {column: normalized.index(column) for column in CSV_HEADERS}
    elif len(header) >= len(LEGACY_CSV_COLUMNS):
        positions = {column: i for i, column in enumerate(LEGACY_CSV_COLUMNS)}
    else:
        raise InvalidInputError("Empty or invalid CSV file: unrecognised header")
    width = max(positions.values()) + 1

    batch = ImportBatch()
    projects: Dict[str, ImportProject] = {}
    line = 1
    while True:
        try:
            record = next(reader)
        except StopIteration:
            break
        except csv.Error as e:
            line += 1
            batch.errors.append(f"Row {line}: error reading row: {e}")
            batch.rejected += 1
            continue
        line += 1
        if not any(cell.strip() for cell in record):
            continue
        if len(record) < width:
            batch.errors.append(f"Row {line}: invalid row format")
            batch.rejected += 1
            continue

        def cell(column: str) -> str:
            index = positions.get(column)
            return record[index] if index is not None else ""

        project_id = cell("project_id").strip()
        if not project_id:
            batch.errors.append(f"Row {line}: missing project id")
            batch.rejected += 1
            continue

        project = projects.get(project_id)
        if project is None:
            project = ImportProject(
                id=project_id,
                name=cell("project_name"),
                description=cell("project_description"),
            )
            projects[project_id] = project

        prompt_id = cell("prompt_id").strip()
        if not prompt_id:
            continue
        project.prompts.append(
            ImportPrompt(
                id=prompt_id,
                # Rows without a prompt name take the project's name.
                name=cell("prompt_name").strip() or project.name,
                version=cell("version").strip(),
                content=cell("content"),
                description=cell("prompt_description"),
                category=cell("category").strip(),
                tags=_split_tags(cell("tags")),
                created_at=parse_timestamp(cell("created_at")),
            )
        )

    batch.projects = list(projects.values())
    return batch


def parse_batch(payload: Union[bytes, str], fmt: Union[str, ImportFormat]) -> ImportBatch:
    fmt_value = fmt.value if isinstance(fmt, ImportFormat) else fmt
    if fmt_value == ImportFormat.JSON.value:
        return parse_json_batch(payload)
    if fmt_value == ImportFormat.CSV.value:
        return parse_csv_batch(payload)
    raise InvalidInputError(f"Unsupported import format: {fmt_value}")


def detect_format(filename: Optional[str]) -> ImportFormat:
    """Guesses the import format from a file name's extension."""
    lowered = (filename or "").lower()
    if lowered.endswith(".json"):
        return ImportFormat.JSON
    if lowered.endswith(".csv"):
        return ImportFormat.CSV
    raise InvalidInputError("Cannot determine file format")


@dataclass
class _ProjectOutcome:
    imported: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


class ImportService:
    """
    Merges ImportBatches into the store.

    Projects match by id: missing ones are created with the supplied id,
    existing ones only get their name and description refreshed. Prompts
    match by id too; what happens to an existing prompt depends on the
    format's ExistingPromptPolicy from configuration. ``update`` overwrites
    name, version, content, description and category in place without a new
    version or history row; ``skip`` leaves it alone. New prompts are
    inserted with a ``create`` history row, and tag names that do not exist
    yet are created. Unknown non-empty categories are row errors.

    Row problems never abort the batch. Each project is its own transaction,
    so a store failure loses only that project.
    """

    def __init__(self, prompt_service: Optional[PromptService] = None, app_settings: Optional[Settings] = None):
        self.prompt_service = prompt_service if prompt_service is not None else PromptService()
        self.settings = app_settings if app_settings is not None else default_settings

    def import_payload(
        self,
        db: DbSession,
        payload: Union[bytes, str],
        fmt: Union[str, ImportFormat],
        cancel_event: Optional[threading.Event] = None,
    ) -> ImportReport:
        batch = parse_batch(payload, fmt)
        fmt = ImportFormat(fmt.value if isinstance(fmt, ImportFormat) else fmt)
        return self.reconcile(db, batch, fmt, cancel_event=cancel_event)

    def reconcile(
        self,
        db: DbSession,
        batch: ImportBatch,
        fmt: Union[str, ImportFormat],
        cancel_event: Optional[threading.Event] = None,
    ) -> ImportReport:
        """
        Reconciles ``batch`` against the store.

        Args:
            db: The SQLAlchemy database session.
            batch: The parsed batch.
            fmt: The source format; selects the existing-prompt policy.
            cancel_event: Checked between projects; once set, the remaining
                projects are left out and reported.

        Returns:
            An ImportReport. ``imported`` and ``skipped`` count prompt rows,
            ``projects`` counts committed projects.
        """
        fmt_value = fmt.value if isinstance(fmt, ImportFormat) else fmt
        policy = self.settings.existing_prompt_policy(fmt_value)
        report = ImportReport(errors=list(batch.errors), skipped=batch.rejected)
        if batch.rejected:
            IMPORT_ROWS_TOTAL.labels(format=fmt_value, outcome="error").inc(batch.rejected)

        for index, project_data in enumerate(batch.projects):
            if cancel_event is not None and cancel_event.is_set():
                remaining = batch.projects[index:]
                report.skipped += sum(len(p.prompts) for p in remaining)
                report.errors.append(f"Import cancelled; {len(remaining)} project(s) not processed")
                logger.warning(f"Import cancelled with {len(remaining)} project(s) remaining")
                break

            label = project_data.name or project_data.id or f"#{index + 1}"
            try:
                outcome = self._reconcile_project(db, project_data, policy, fmt_value)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Import of project {label} rolled back: {e}", exc_info=True)
                report.errors.append(f"Failed to import project {label}")
                report.skipped += len(project_data.prompts)
                IMPORT_ROWS_TOTAL.labels(format=fmt_value, outcome="error").inc(len(project_data.prompts))
                continue
            if outcome is None:
                report.errors.append(f"Project {label}: name is required")
                report.skipped += len(project_data.prompts)
                continue

            report.projects += 1
            report.imported += outcome.imported
            report.skipped += outcome.skipped
            report.errors.extend(outcome.errors)

        logger.info(
            f"Import ({fmt_value}) finished: imported={report.imported} skipped={report.skipped} "
            f"projects={report.projects} errors={len(report.errors)}"
        )
        return report

    def _reconcile_project(
        self, db: DbSession, data: ImportProject, policy: ExistingPromptPolicy, fmt: str
    ) -> Optional[_ProjectOutcome]:
        project = db.get(Project, data.id) if data.id else None
        if project is None:
            name = data.name.strip()
            if not name:
                return None
            project = Project(id=data.id or generate_id(), name=name, description=data.description)
            db.add(project)
            db.flush()
            logger.info(f"Import created project '{name}' ({project.id})")
        else:
            if data.name.strip():
                project.name = data.name.strip()
            project.description = data.description

        if data.tags:
            linked_tags = get_or_create_tags(db, ((t.name, t.color) for t in data.tags))
            for db_tag in linked_tags:
                if db_tag not in project.tags:
                    project.tags.append(db_tag)

        outcome = _ProjectOutcome()
        with self.prompt_service.locks.hold_many(project.id, self._lineage_names(db, project, data)):
            for prompt_data in data.prompts:
                label = prompt_data.id or f"{prompt_data.name or project.name}@{prompt_data.version or '?'}"
                existing = db.get(Prompt, prompt_data.id) if prompt_data.id else None
                if existing is not None:
                    if policy == ExistingPromptPolicy.SKIP:
                        outcome.skipped += 1
                        IMPORT_ROWS_TOTAL.labels(format=fmt, outcome="skipped").inc()
                        continue
                    error = self._overwrite_prompt(db, project, existing, prompt_data)
                else:
                    error = self._insert_prompt(db, project, prompt_data)

                if error:
                    outcome.errors.append(f"Prompt {label}: {error}")
                    outcome.skipped += 1
                    IMPORT_ROWS_TOTAL.labels(format=fmt, outcome="error").inc()
                else:
                    outcome.imported += 1
                    IMPORT_ROWS_TOTAL.labels(format=fmt, outcome="imported").inc()

            db.commit()
        return outcome

    @staticmethod
    def _lineage_names(db: DbSession, project: Project, data: ImportProject) -> Set[str]:
        names = {p.name.strip() or project.name for p in data.prompts}
        ids = [p.id for p in data.prompts if p.id]
        if ids:
            names.update(
                name for (name,) in db.query(Prompt.name).filter(Prompt.project_id == project.id, Prompt.id.in_(ids))
            )
        return names

    def _check_fields(self, db: DbSession, content: str, category: str) -> Optional[str]:
        try:
            ensure_text(content, "Prompt")
        except InvalidInputError as e:
            return e.message
        if not content.strip():
            return "content is empty"
        if category and get_category_by_name(db, category) is None:
            return f"invalid category '{category}'"
        return None

    @staticmethod
    def _version_taken(db: DbSession, project_id: str, name: str, version: str, exclude_id: Optional[str] = None) -> bool:
        query = db.query(Prompt.id).filter(
            Prompt.project_id == project_id, Prompt.name == name, Prompt.version == version
        )
        if exclude_id is not None:
            query = query.filter(Prompt.id != exclude_id)
        return query.first() is not None

    def _overwrite_prompt(self, db: DbSession, project: Project, existing: Prompt, data: ImportPrompt) -> Optional[str]:
        if existing.project_id != project.id:
            return "id belongs to another project"
        name = data.name.strip() or existing.name
        version = data.version or existing.version
        if not is_valid_version(version):
            return f"malformed version '{version}'"
        error = self._check_fields(db, data.content, data.category)
        if error:
            return error
        if self._version_taken(db, project.id, name, version, exclude_id=existing.id):
            return f"version {version} of '{name}' already exists"

        # Overwritten in place: no new version and no history row.
        existing.name = name
        existing.version = version
        existing.content = data.content
        existing.description = data.description
        existing.category = data.category
        db.flush()
        return None

    def _insert_prompt(self, db: DbSession, project: Project, data: ImportPrompt) -> Optional[str]:
        name = data.name.strip() or project.name
        error = self._check_fields(db, data.content, data.category)
        if error:
            return error

        version = data.version
        if not version:
            version = self.prompt_service.mint_version(db, project.id, name, BumpClass.PATCH)
        elif not is_valid_version(version):
            return f"malformed version '{version}'"
        elif self._version_taken(db, project.id, name, version):
            return f"version {version} of '{name}' already exists"

        tags = get_or_create_tags(db, ((t.name, t.color) for t in data.tags))
        db_prompt = Prompt(
            id=data.id or generate_id(),
            project_id=project.id,
            name=name,
            version=version,
            content=data.content,
            description=data.description,
            category=data.category,
            created_at=data.created_at or utcnow(),
            tags=tags,
        )
        db.add(db_prompt)
        db.flush()
        record_history(db, db_prompt.id, HistoryOperation.CREATE, "", db_prompt.content)
        return None
