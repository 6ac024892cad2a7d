"""
Tests for vet file loading and run settings.
"""

import json

import pytest

from sqlvet.config import (
    RunSettings,
    find_vet_file,
    get_settings,
    load_vet_file,
    reset_settings,
)
from sqlvet.exceptions import ConfigurationError

VET_YAML = """\
version: "2"
rules:
  - name: no-select-star
    rule: 'query.sql.contains("*")'
    msg: avoid select *
sql:
  - engine: postgresql
    schema: schema.sql
    queries: [query.sql]
    request: build/request.json
    database:
      uri: postgresql://${PGUSER}@localhost/app
    rules: [sqlc/db-prepare, no-select-star]
"""


@pytest.fixture(autouse=True)
def clean_settings():
    reset_settings()
    yield
    reset_settings()


class TestLoadVetFile:
    """Tests for load_vet_file()."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "sqlvet.yaml"
        path.write_text(VET_YAML)

        vet_file = load_vet_file(path)

        assert vet_file.version == "2"
        assert vet_file.rules[0].name == "no-select-star"
        assert vet_file.rules[0].msg == "avoid select *"
        group = vet_file.sql[0]
        assert group.engine == "postgresql"
        assert group.schema_ == ["schema.sql"]
        assert group.request == "build/request.json"
        assert group.database.uri == "postgresql://${PGUSER}@localhost/app"
        assert group.rules == ["sqlc/db-prepare", "no-select-star"]

    def test_load_json(self, tmp_path):
        path = tmp_path / "sqlvet.json"
        path.write_text(json.dumps({
            "rules": [{"name": "r", "rule": "true"}],
            "sql": [{"engine": "sqlite", "queries": ["q.sql"], "rules": ["r"]}],
        }))

        vet_file = load_vet_file(path)
        assert vet_file.sql[0].engine == "sqlite"
        assert vet_file.sql[0].database is None

    def test_unknown_engine(self, tmp_path):
        path = tmp_path / "sqlvet.yaml"
        path.write_text("sql:\n  - engine: oracle\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_vet_file(path)
        assert "unknown engine 'oracle'" in exc_info.value.message

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "sqlvet.yaml"
        path.write_text("rules: [\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_vet_file(path)
        assert exc_info.value.message.startswith("error parsing sqlvet.yaml")

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "sqlvet.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError):
            load_vet_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_vet_file(tmp_path / "sqlvet.yaml")
        assert exc_info.value.message.startswith("error reading sqlvet.yaml")


class TestFindVetFile:
    """Tests for find_vet_file()."""

    def test_finds_yaml(self, tmp_path):
        (tmp_path / "sqlvet.yaml").write_text(VET_YAML)
        assert find_vet_file(tmp_path) == tmp_path / "sqlvet.yaml"

    def test_nothing_found(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            find_vet_file(tmp_path)
        assert "no vet file found" in exc_info.value.message


class TestRunSettings:
    """Tests for environment-driven run settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SQLVET_NO_DATABASE", raising=False)
        monkeypatch.delenv("SQLVET_DUMP_EXPLAIN", raising=False)
        monkeypatch.delenv("SQLVET_LOG_LEVEL", raising=False)

        assert get_settings() == RunSettings()

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("SQLVET_NO_DATABASE", "true")
        monkeypatch.setenv("SQLVET_DUMP_EXPLAIN", "1")
        monkeypatch.setenv("SQLVET_LOG_LEVEL", "debug")

        settings = get_settings()
        assert settings.no_database
        assert settings.dump_explain
        assert settings.log_level == "DEBUG"

    def test_settings_are_cached(self, monkeypatch):
        monkeypatch.setenv("SQLVET_NO_DATABASE", "false")
        first = get_settings()
        monkeypatch.setenv("SQLVET_NO_DATABASE", "true")

        assert get_settings() is first
        reset_settings()
        assert get_settings().no_database
