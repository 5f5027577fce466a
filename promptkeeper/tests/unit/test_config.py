import logging

import pytest

from promptkeeper import config
from promptkeeper.config import Settings, load_config_file
from promptkeeper.enums import ExistingPromptPolicy


@pytest.fixture(autouse=True)
def clean_environ(monkeypatch):
    for _, _, env_var in config._FIELD_SOURCES.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.delenv("PROMPTKEEPER_CONFIG_FILE", raising=False)


def test_defaults():
    s = Settings(config_data={})
    assert s.PORT == 7788
    assert s.DATABASE_URL == "sqlite:///./promptkeeper.db"
    assert s.VERSION_MINT_MAX_RETRIES == 3
    assert s.DEBUG is False
    assert s.existing_prompt_policy("json") == ExistingPromptPolicy.UPDATE
    assert s.existing_prompt_policy("csv") == ExistingPromptPolicy.SKIP


def test_yaml_sections_override_defaults():
    s = Settings(config_data={
        "server": {"port": "9000"},
        "database": {"url": "sqlite:///./other.db"},
        "logging": {"debug": True},
        "import": {"csv_existing_prompts": "update"},
    })
    assert s.PORT == 9000
    assert s.DATABASE_URL == "sqlite:///./other.db"
    assert s.DEBUG is True
    assert s.existing_prompt_policy("csv") == ExistingPromptPolicy.UPDATE


def test_environment_beats_yaml(monkeypatch):
    monkeypatch.setenv("PROMPTKEEPER_PORT", "8100")
    monkeypatch.setenv("VERSION_MINT_MAX_RETRIES", "7")
    monkeypatch.setenv("PROMPTKEEPER_DEBUG", "yes")
    s = Settings(config_data={"server": {"port": 9000}})
    assert s.PORT == 8100
    assert s.VERSION_MINT_MAX_RETRIES == 7
    assert s.DEBUG is True


def test_invalid_import_policy_is_rejected():
    with pytest.raises(ValueError):
        Settings(config_data={"import": {"json_existing_prompts": "merge"}})


def test_load_config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("server:\n  port: 8123\nversioning:\n  max_retries: 5\n", encoding="utf-8")
    data = load_config_file(str(path))
    s = Settings(config_data=data)
    assert s.PORT == 8123
    assert s.VERSION_MINT_MAX_RETRIES == 5


def test_explicit_missing_config_file_is_an_error(tmp_path, monkeypatch):
    monkeypatch.setenv("PROMPTKEEPER_CONFIG_FILE", str(tmp_path / "missing.yaml"))
    with pytest.raises(FileNotFoundError):
        load_config_file()


def test_implicit_config_file_is_optional(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert load_config_file() == {}
