import json
import logging
from datetime import datetime, timedelta

import pytest

from promptkeeper.enums import HistoryOperation
from promptkeeper.errors import NotFoundError
from promptkeeper.logging_config import HISTORY_LOGGER_NAME
from promptkeeper.models import Prompt, PromptHistory
from promptkeeper.services.history_service import get_history_for_prompt, record_history


@pytest.fixture
def prompt_row(db_session, project):
    row = Prompt(project_id=project.id, name="greeting", version="1.0.0", content="Hello")
    db_session.add(row)
    db_session.commit()
    return row


def test_record_is_pending_until_caller_commits(db_session, prompt_row):
    record_history(db_session, prompt_row.id, HistoryOperation.CREATE, "", "Hello")
    db_session.rollback()
    assert db_session.query(PromptHistory).count() == 0

    record_history(db_session, prompt_row.id, "update", "Hello", "Hi")
    db_session.commit()
    assert db_session.query(PromptHistory).count() == 1


def test_unknown_operation_is_rejected(db_session, prompt_row):
    with pytest.raises(ValueError):
        record_history(db_session, prompt_row.id, "delete", "a", "b")


def test_history_is_newest_first_and_pageable(db_session, prompt_row):
    base = datetime(2024, 1, 1)
    for i, op in enumerate(["create", "update_keep_version", "update_keep_version"]):
        db_session.add(PromptHistory(
            prompt_id=prompt_row.id, operation=op, old_content=str(i), new_content=str(i + 1),
            created_at=base + timedelta(minutes=i),
        ))
    db_session.commit()

    history = get_history_for_prompt(db_session, prompt_row.id)
    assert [h.new_content for h in history] == ["3", "2", "1"]
    assert [h.new_content for h in get_history_for_prompt(db_session, prompt_row.id, skip=1, limit=1)] == ["2"]
    # Restartable: a second read gives the same sequence.
    assert [h.id for h in get_history_for_prompt(db_session, prompt_row.id)] == [h.id for h in history]


def test_history_for_unknown_prompt(db_session):
    with pytest.raises(NotFoundError):
        get_history_for_prompt(db_session, "missing")


def test_history_is_written_to_audit_logger(db_session, prompt_row, caplog):
    with caplog.at_level(logging.INFO, logger=HISTORY_LOGGER_NAME):
        record_history(db_session, prompt_row.id, HistoryOperation.ROLLBACK, "", "Hello")
    records = [r for r in caplog.records if r.name == HISTORY_LOGGER_NAME]
    assert records
    assert records[-1].msg["operation"] == "rollback"
    assert records[-1].msg["prompt_id"] == prompt_row.id
    # Content never goes to the audit log, only lengths.
    assert "Hello" not in json.dumps(records[-1].msg)
