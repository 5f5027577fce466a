import json
from unittest import mock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from promptkeeper.errors import StoreFailureError
from promptkeeper.models import Project, Prompt, PromptHistory
from promptkeeper.models.tag_models import prompt_tags
from promptkeeper.schemas import PromptCreate, PromptUpdate
from promptkeeper.services import ImportService
from promptkeeper.services.history_service import record_history


def _disk_error(*args, **kwargs):
    raise OperationalError("INSERT INTO prompt_history", {}, Exception("disk I/O error"))


def _counts(db):
    return (
        db.query(Prompt).count(),
        db.query(PromptHistory).count(),
        db.execute(select(func.count()).select_from(prompt_tags)).scalar(),
    )


@pytest.fixture
def seeded(db_session, prompt_service, project, category, tags):
    prompt = prompt_service.create_prompt(
        db_session, project.id,
        PromptCreate(name="greeting", content="Hello", category="general", tag_ids=[tags[0].id]),
    )
    return prompt


def test_failed_create_writes_nothing(db_session, prompt_service, project, category, tags):
    with mock.patch("promptkeeper.services.prompt_service.record_history", side_effect=_disk_error):
        with pytest.raises(StoreFailureError):
            prompt_service.create_prompt(
                db_session, project.id,
                PromptCreate(name="greeting", content="Hello", category="general", tag_ids=[t.id for t in tags]),
            )

    assert _counts(db_session) == (0, 0, 0)


def test_failed_update_mints_nothing(db_session, prompt_service, seeded):
    before = _counts(db_session)

    with mock.patch("promptkeeper.services.prompt_service.record_history", side_effect=_disk_error):
        with pytest.raises(StoreFailureError):
            prompt_service.update_prompt(db_session, seeded.id, PromptUpdate(content="Changed", bump="minor"))

    assert _counts(db_session) == before
    assert [p.version for p in db_session.query(Prompt).all()] == ["1.0.0"]


def test_failed_keep_version_update_leaves_content(db_session, prompt_service, seeded):
    before = _counts(db_session)

    with mock.patch("promptkeeper.services.prompt_service.record_history", side_effect=_disk_error):
        with pytest.raises(StoreFailureError):
            prompt_service.update_prompt(
                db_session, seeded.id, PromptUpdate(content="Changed", keep_version=True)
            )

    assert _counts(db_session) == before
    db_session.expire_all()
    assert db_session.get(Prompt, seeded.id).content == "Hello"


def test_failed_rollback_mints_nothing(db_session, prompt_service, seeded):
    before = _counts(db_session)

    with mock.patch("promptkeeper.services.prompt_service.record_history", side_effect=_disk_error):
        with pytest.raises(StoreFailureError):
            prompt_service.rollback_prompt(db_session, seeded.id)

    assert _counts(db_session) == before


def test_store_failure_loses_only_the_failing_project(db_session, test_settings, prompt_service, category):
    def failing_for_second_project(db, prompt_id, *args, **kwargs):
        if prompt_id == "p2":
            _disk_error()
        return record_history(db, prompt_id, *args, **kwargs)

    payload = json.dumps({"projects": [
        {"id": "proj-1", "name": "First", "prompts": [
            {"id": "p1", "name": "greeting", "version": "1.0.0", "content": "Hello", "category": "general"},
        ]},
        {"id": "proj-2", "name": "Second", "tags": [{"name": "team"}], "prompts": [
            {"id": "p2", "name": "greeting", "version": "1.0.0", "content": "Hi", "category": "general",
             "tags": ["fresh"]},
        ]},
    ]})
    service = ImportService(prompt_service=prompt_service, app_settings=test_settings)

    with mock.patch("promptkeeper.services.import_service.record_history", side_effect=failing_for_second_project):
        report = service.import_payload(db_session, payload, "json")

    assert (report.imported, report.skipped, report.projects) == (1, 1, 1)
    assert report.errors == ["Failed to import project Second"]
    db_session.expire_all()
    assert [p.id for p in db_session.query(Project).all()] == ["proj-1"]
    assert [p.id for p in db_session.query(Prompt).all()] == ["p1"]
    assert [h.prompt_id for h in db_session.query(PromptHistory).all()] == ["p1"]
