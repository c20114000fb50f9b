from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from recordsql import main

from conftest import DECLARATIONS

runner = CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch) -> None:
    monkeypatch.setattr(main, "configure_logging", lambda **kwargs: None)


@pytest.fixture
def declarations_file(tmp_path):
    path = tmp_path / "records.json"
    path.write_text(json.dumps(DECLARATIONS), encoding="utf-8")
    return path


def _request_file(tmp_path, payload):
    path = tmp_path / "request.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_info_masks_password() -> None:
    result = runner.invoke(main.app, ["info"])
    assert result.exit_code == 0
    assert "db_host" in result.stdout
    assert "***" in result.stdout


def test_sql_lists_every_operation(declarations_file) -> None:
    result = runner.invoke(main.app, ["sql", str(declarations_file), "--record", "invoice"])

    assert result.exit_code == 0
    for operation in ("select", "insert", "update", "delete"):
        assert operation in result.stdout


def test_sql_unknown_record(declarations_file) -> None:
    result = runner.invoke(main.app, ["sql", str(declarations_file), "-r", "nope"])
    assert result.exit_code == 1


def test_sql_missing_declarations(tmp_path) -> None:
    result = runner.invoke(main.app, ["sql", str(tmp_path / "missing.json")])
    assert result.exit_code == 1


def test_filter_prints_parameters(declarations_file, tmp_path) -> None:
    request = _request_file(tmp_path, {"filters": [{"field": "customerId", "comparator": "=", "value": "C1"}]})

    result = runner.invoke(main.app, ["filter", str(declarations_file), "invoice", str(request), "--tenant", "T1"])

    assert result.exit_code == 0
    assert "Clause" in result.stdout
    assert "'T1'" in result.stdout
    assert "'C1'" in result.stdout


def test_filter_rejected(declarations_file, tmp_path) -> None:
    request = _request_file(tmp_path, {"filters": [{"field": "nope", "comparator": "=", "value": "1"}]})

    result = runner.invoke(main.app, ["filter", str(declarations_file), "invoice", str(request), "-t", "T1"])

    assert result.exit_code == 2


def test_filter_unknown_record(declarations_file, tmp_path) -> None:
    request = _request_file(tmp_path, {})
    result = runner.invoke(main.app, ["filter", str(declarations_file), "nope", str(request)])
    assert result.exit_code == 1
