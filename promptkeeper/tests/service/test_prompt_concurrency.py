import threading
from unittest import mock

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.orm import sessionmaker

from promptkeeper.database import make_engine
from promptkeeper.errors import ConflictError
from promptkeeper.models import Base, Category, Project, Prompt, PromptHistory
from promptkeeper.schemas import PromptCreate
from promptkeeper.services import PromptService


def _conflicts():
    return REGISTRY.get_sample_value("promptkeeper_version_mint_conflicts_total") or 0.0


def test_collision_is_retried_with_a_fresh_version(db_session, project, category):
    service = PromptService(max_retries=3)
    service.create_prompt(db_session, project.id, PromptCreate(name="greeting", content="one", category="general"))
    before = _conflicts()

    # The first minted version loses to a row another writer already holds.
    with mock.patch.object(service, "mint_version", side_effect=["1.0.0", "1.0.1"]):
        created = service.create_prompt(
            db_session, project.id, PromptCreate(name="greeting", content="two", category="general")
        )

    assert created.version == "1.0.1"
    assert _conflicts() == before + 1
    assert db_session.query(Prompt).count() == 2
    assert db_session.query(PromptHistory).count() == 2


def test_exhausted_retries_raise_conflict_and_leave_nothing_behind(db_session, project, category):
    service = PromptService(max_retries=3)
    service.create_prompt(db_session, project.id, PromptCreate(name="greeting", content="one", category="general"))

    with mock.patch.object(service, "mint_version", return_value="1.0.0") as minted:
        with pytest.raises(ConflictError):
            service.create_prompt(
                db_session, project.id, PromptCreate(name="greeting", content="two", category="general")
            )

    assert minted.call_count == 3
    assert db_session.query(Prompt).count() == 1
    assert db_session.query(PromptHistory).count() == 1


@pytest.fixture
def file_session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"timeout": 30})
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def test_concurrent_creates_never_share_a_version(file_session_factory):
    setup = file_session_factory()
    setup_project = Project(name="Race")
    setup.add_all([setup_project, Category(name="general")])
    setup.commit()
    project_id = setup_project.id
    setup.close()

    service = PromptService(max_retries=3)
    workers = 2
    barrier = threading.Barrier(workers)
    versions = []
    conflicts = []
    failures = []

    def create(index):
        db = file_session_factory()
        try:
            barrier.wait()
            prompt = service.create_prompt(
                db, project_id, PromptCreate(name="greeting", content=f"writer {index}", category="general")
            )
            versions.append(prompt.version)
        except ConflictError:
            conflicts.append(index)
        except Exception as e:  # surfaced through the assertion below
            failures.append(e)
        finally:
            db.close()

    threads = [threading.Thread(target=create, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert failures == []
    assert len(versions) + len(conflicts) == workers
    assert len(set(versions)) == len(versions)

    check = file_session_factory()
    try:
        stored = sorted(row[0] for row in check.query(Prompt.version).filter(Prompt.project_id == project_id))
        assert stored == sorted(versions)
        assert check.query(PromptHistory).count() == len(versions)
    finally:
        check.close()
