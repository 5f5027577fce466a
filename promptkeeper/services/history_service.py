import logging
from typing import List, Optional, Union

from sqlalchemy.orm import Session as DbSession

from promptkeeper.enums import HistoryOperation
from promptkeeper.errors import NotFoundError
from promptkeeper.logging_config import HISTORY_LOGGER_NAME
from promptkeeper.metrics import HISTORY_RECORDS_TOTAL
from promptkeeper.models.prompt_models import Prompt, PromptHistory

logger = logging.getLogger(__name__)
history_logger = logging.getLogger(HISTORY_LOGGER_NAME)


def record_history(
    db: DbSession,
    prompt_id: str,
    operation: Union[HistoryOperation, str],
    old_content: str,
    new_content: str,
) -> PromptHistory:
    """
    Appends one history row inside the caller's transaction.

    The row is flushed, not committed: it becomes durable only together with
    the prompt mutation it documents.

    Args:
        db: The SQLAlchemy database session.
        prompt_id: The prompt row the mutation produced or changed.
        operation: One of the HistoryOperation values.
        old_content: Content before the mutation ("" for creates and rollbacks).
        new_content: Content after the mutation.

    Returns:
        The pending PromptHistory row.
    """
    op_value = operation.value if isinstance(operation, HistoryOperation) else HistoryOperation(operation).value
    entry = PromptHistory(
        prompt_id=prompt_id,
        operation=op_value,
        old_content=old_content or "",
        new_content=new_content or "",
    )
    db.add(entry)
    db.flush()

    HISTORY_RECORDS_TOTAL.labels(operation=op_value).inc()
    history_logger.info({
        "event": "prompt_history",
        "history_id": entry.id,
        "prompt_id": prompt_id,
        "operation": op_value,
        "old_length": len(entry.old_content),
        "new_length": len(entry.new_content),
    })
    return entry


def get_history_for_prompt(
    db: DbSession, prompt_id: str, skip: int = 0, limit: Optional[int] = None
) -> List[PromptHistory]:
    """Returns the prompt's history rows, newest first."""
    if db.get(Prompt, prompt_id) is None:
        raise NotFoundError(f"Prompt {prompt_id} not found")

    query = (
        db.query(PromptHistory)
        .filter(PromptHistory.prompt_id == prompt_id)
        .order_by(PromptHistory.created_at.desc(), PromptHistory.id.desc())
        .offset(skip)
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()
