"""
Tests for the sqlvet command line interface.
"""

import json

import pytest
from typer.testing import CliRunner

from sqlvet import __version__
from sqlvet.cli.main import app
from sqlvet.config import reset_settings

runner = CliRunner()

VET_YAML = """\
version: "2"
rules:
  - name: no-select-star
    rule: 'query.sql.contains("*")'
    msg: avoid select *
  - name: large-scan
    rule: 'postgresql.explain.plan.plan_rows > 1000'
sql:
  - engine: postgresql
    schema: [schema.sql]
    queries: [query.sql]
    request: request.json
    rules: [{rules}]
"""


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    for name in ("SQLVET_NO_DATABASE", "SQLVET_DUMP_EXPLAIN", "SQLVET_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


def write_project(tmp_path, sql, rules="no-select-star"):
    (tmp_path / "request.json").write_text(json.dumps({
        "queries": [{"name": "ListAuthors", "text": sql, "cmd": ":many", "filename": "query.sql"}],
    }))
    path = tmp_path / "sqlvet.yaml"
    path.write_text(VET_YAML.format(rules=rules))
    return path


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestVetCommand:
    """Exit code contract of `sqlvet vet`."""

    def test_clean_run(self, tmp_path):
        path = write_project(tmp_path, "SELECT id FROM authors")
        result = runner.invoke(app, ["vet", "--file", str(path)])

        assert result.exit_code == 0
        assert result.output == ""

    def test_failed_checks(self, tmp_path):
        path = write_project(tmp_path, "SELECT * FROM authors")
        result = runner.invoke(app, ["vet", "--file", str(path)])

        assert result.exit_code == 1
        assert "query.sql: ListAuthors: no-select-star: avoid select *" in result.output

    def test_unknown_rule_is_fatal(self, tmp_path):
        path = write_project(tmp_path, "SELECT * FROM authors", rules="no-select-star, typo")
        result = runner.invoke(app, ["vet", "--file", str(path)])

        assert result.exit_code == 2
        assert "error: type-check error: a rule with the name 'typo' does not exist" in result.output
        assert "no-select-star: avoid select *" not in result.output

    def test_explain_rule_without_database(self, tmp_path):
        path = write_project(tmp_path, "SELECT id FROM authors", rules="large-scan")
        result = runner.invoke(app, ["vet", "--file", str(path), "--no-database"])

        assert result.exit_code == 1
        assert "large-scan: error explaining query: database connection required" in result.output

    def test_missing_vet_file(self, tmp_path):
        result = runner.invoke(app, ["vet", "--file", str(tmp_path / "sqlvet.yaml")])

        assert result.exit_code == 2
        assert "error: error reading sqlvet.yaml" in result.output

    def test_bad_rule_is_fatal(self, tmp_path):
        path = tmp_path / "sqlvet.yaml"
        path.write_text("rules:\n  - name: broken\n    rule: 'query.nope'\n")
        result = runner.invoke(app, ["vet", "--file", str(path)])

        assert result.exit_code == 2
        assert "error: type-check error: broken" in result.output

    def test_unexpected_exception_is_fatal(self, tmp_path, monkeypatch):
        async def reset(*args, **kwargs):
            raise ConnectionResetError("connection reset by peer")

        monkeypatch.setattr("sqlvet.cli.main.run_vet", reset)
        path = write_project(tmp_path, "SELECT id FROM authors")
        result = runner.invoke(app, ["vet", "--file", str(path)])

        assert result.exit_code == 2
        assert "error: connection reset by peer" in result.output

    def test_interrupt_is_fatal(self, tmp_path, monkeypatch):
        async def interrupted(*args, **kwargs):
            raise KeyboardInterrupt

        monkeypatch.setattr("sqlvet.cli.main.run_vet", interrupted)
        path = write_project(tmp_path, "SELECT id FROM authors")
        result = runner.invoke(app, ["vet", "--file", str(path)])

        assert result.exit_code == 2
        assert "error: interrupted" in result.output


class TestRulesCommand:
    def test_lists_compiled_rules(self, tmp_path):
        path = write_project(tmp_path, "SELECT 1")
        result = runner.invoke(app, ["rules", "--file", str(path)])

        assert result.exit_code == 0
        assert "sqlc/db-prepare" in result.output
        assert "no-select-star" in result.output
        assert "large-scan" in result.output
        assert "Total: 3 rule(s)" in result.output
