"""
tests/test_cli.py
End-to-end tests for the admingen command-line interface.

Commands run through ``admingen.cli.run`` against a file-backed SQLite
database in tmp_path; output is captured with capsys.
"""

from __future__ import annotations

import json
import pathlib
from typing import Any, Dict, List

import pytest
import yaml

from admingen.cli import (
    EXIT_INPUT_ERROR,
    EXIT_SCHEMA_ERROR,
    EXIT_SUCCESS,
    EXIT_VALIDATION_ERROR,
    run,
)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("METADATA_PATHS", "DATABASE_URL", "STRICT", "CUSTOM_FIELDS_PATH"):
        monkeypatch.delenv(f"ADMINGEN_{name}", raising=False)


def _args(command: str, metadata_dir: pathlib.Path, database_url: str, *extra: str) -> List[str]:
    return [command, *extra, "-q", "-m", str(metadata_dir), "--database-url", database_url]


class TestCheck:
    def test_valid_metadata(
        self, metadata_dir: pathlib.Path, database_url: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert run(_args("check", metadata_dir, database_url)) == EXIT_SUCCESS
        out = capsys.readouterr().out
        assert "Models:     6" in out
        assert "Valid:      Yes" in out

    def test_validation_error(
        self,
        tmp_path: pathlib.Path,
        database_url: str,
        crm_documents: Dict[str, Dict[str, Any]],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        crm_documents["models"]["models"][1]["fields"].append({"name": "company_id", "type": "string"})
        root = tmp_path / "broken"
        root.mkdir()
        (root / "crm.yml").write_text(yaml.safe_dump(crm_documents["models"]), encoding="utf-8")
        assert run(_args("check", root, database_url)) == EXIT_VALIDATION_ERROR
        assert "FOREIGN_KEY_TYPE_MISMATCH" in capsys.readouterr().out
        assert run(_args("plan", root, database_url)) == EXIT_VALIDATION_ERROR

    def test_missing_metadata_path(
        self, tmp_path: pathlib.Path, database_url: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert run(_args("check", tmp_path / "missing", database_url)) == EXIT_INPUT_ERROR
        assert "does not exist" in capsys.readouterr().err

    def test_undecodable_metadata_file(
        self, tmp_path: pathlib.Path, database_url: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        root = tmp_path / "binary"
        root.mkdir()
        (root / "models.yml").write_bytes(b"models:\n  - name: \xff\xfe\n")
        assert run(_args("check", root, database_url)) == EXIT_INPUT_ERROR
        err = capsys.readouterr().err
        assert "Cannot read metadata file" in err
        assert "models.yml" in err

    def test_missing_config_file(self, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert run(["check", "-q", "-c", str(tmp_path / "nope.yml")]) == EXIT_INPUT_ERROR
        assert "Cannot read settings" in capsys.readouterr().err


class TestSchemaCommands:
    def test_plan_then_migrate(
        self, metadata_dir: pathlib.Path, database_url: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert run(_args("plan", metadata_dir, database_url)) == EXIT_SUCCESS
        out = capsys.readouterr().out
        assert "deal (deals):" in out
        assert "CREATE TABLE deals" in out

        assert run(_args("migrate", metadata_dir, database_url)) == EXIT_SUCCESS
        out = capsys.readouterr().out
        assert "applied to 6 model(s)." in out

        assert run(_args("plan", metadata_dir, database_url)) == EXIT_SUCCESS
        out = capsys.readouterr().out
        assert "deal: up to date" in out
        # the skipped position index is reported on every plan
        assert "repair-positions task" in out

        assert run(_args("migrate", metadata_dir, database_url)) == EXIT_SUCCESS
        assert "0 step(s) applied to 6 model(s)." in capsys.readouterr().out

    def test_repair_positions(
        self, metadata_dir: pathlib.Path, database_url: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert run(_args("migrate", metadata_dir, database_url)) == EXIT_SUCCESS
        capsys.readouterr()
        assert run(_args("repair-positions", metadata_dir, database_url, "task")) == EXIT_SUCCESS
        assert capsys.readouterr().out.strip() == (
            "task: 0 position(s) renumbered; unique position index in place."
        )

    def test_repair_without_table_is_a_schema_error(
        self, metadata_dir: pathlib.Path, database_url: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert run(_args("repair-positions", metadata_dir, database_url, "task")) == EXIT_SCHEMA_ERROR
        assert "schema error" in capsys.readouterr().err

    def test_repair_unpositioned_model(self, metadata_dir: pathlib.Path, database_url: str) -> None:
        assert run(_args("repair-positions", metadata_dir, database_url, "deal")) == EXIT_INPUT_ERROR


class TestIncludes:
    def test_show_context(
        self, metadata_dir: pathlib.Path, database_url: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        argv = _args("includes", metadata_dir, database_url, "deal_admin", "--context", "show")
        assert run(argv) == EXIT_SUCCESS
        assert json.loads(capsys.readouterr().out) == {
            "join_only": [],
            "joined_preload": [],
            "preload": ["comments"],
        }

    def test_runtime_sort(
        self, metadata_dir: pathlib.Path, database_url: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        argv = _args("includes", metadata_dir, database_url, "deal_admin", "--sort", "company.name")
        assert run(argv) == EXIT_SUCCESS
        assert json.loads(capsys.readouterr().out)["joined_preload"] == ["company"]

    def test_unknown_presenter(self, metadata_dir: pathlib.Path, database_url: str) -> None:
        argv = _args("includes", metadata_dir, database_url, "ghost")
        assert run(argv) == EXIT_INPUT_ERROR

    def test_command_is_required(self) -> None:
        with pytest.raises(SystemExit):
            run([])
