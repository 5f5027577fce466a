import json
from unittest import mock

import pytest

from promptkeeper import __version__
from promptkeeper.cli import main_cli
from promptkeeper.models import Prompt
from promptkeeper.schemas import PromptCreate
from promptkeeper.services import delete_project


@pytest.fixture
def cli_db(session_factory):
    with mock.patch("promptkeeper.cli.SessionLocal", session_factory), \
            mock.patch("promptkeeper.cli.init_db") as init_db:
        yield init_db


def test_version_flag(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main_cli(["--version"])
    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    assert main_cli([]) == 0
    assert "commands" in capsys.readouterr().out


def test_export_then_import(cli_db, db_session, prompt_service, project, category, tmp_path):
    prompt_service.create_prompt(db_session, project.id, PromptCreate(name="greeting", content="Hello", category="general"))
    output = tmp_path / "backup.json"

    assert main_cli(["export", "--project-id", project.id, "--output", str(output)]) == 0
    cli_db.assert_called_once_with()
    data = json.loads(output.read_text(encoding="utf-8"))
    assert data["projects"][0]["prompts"][0]["content"] == "Hello"

    delete_project(db_session, project.id)
    db_session.expunge_all()

    assert main_cli(["import", str(output)]) == 0
    assert db_session.query(Prompt).count() == 1


def test_export_yaml(cli_db, db_session, prompt_service, project, category, tmp_path):
    prompt_service.create_prompt(db_session, project.id, PromptCreate(name="greeting", content="Hello", category="general"))
    output = tmp_path / "prompts.yaml"

    assert main_cli(["export", "--project-id", project.id, "--format", "yaml", "-o", str(output)]) == 0
    assert output.read_text(encoding="utf-8").strip() == "greeting: Hello"


def test_import_missing_file(cli_db, tmp_path, capsys):
    assert main_cli(["import", str(tmp_path / "missing.json")]) == 1
    assert "File not found" in capsys.readouterr().err


def test_import_failure_is_reported(cli_db, tmp_path, capsys):
    broken = tmp_path / "broken.json"
    broken.write_text("{nope", encoding="utf-8")

    assert main_cli(["import", str(broken)]) == 1
    assert "InvalidInput" in capsys.readouterr().err


def test_import_unknown_extension_needs_a_format(cli_db, tmp_path, capsys):
    notes = tmp_path / "notes.txt"
    notes.write_text("x", encoding="utf-8")

    assert main_cli(["import", str(notes)]) == 1
    assert "InvalidInput" in capsys.readouterr().err
