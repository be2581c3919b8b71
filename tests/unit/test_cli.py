"""
Unit tests for the command line interface.
"""

import json

import pytest
from typer.testing import CliRunner

from perfcore import cli
from perfcore.executors.base import ExecutorRegistry

from tests.conftest import StubExecutor


pytestmark = pytest.mark.unit

runner = CliRunner()


@pytest.fixture
def scenario_file(tmp_path):
    def _write(document):
        path = tmp_path / "scenario.json"
        path.write_text(document if isinstance(document, str) else json.dumps(document), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def stub_registry(monkeypatch):
    def _install(status=200):
        executor = StubExecutor(status=status)
        monkeypatch.setattr(cli, "default_registry", lambda settings, client=None: ExecutorRegistry({"http": executor}))
        return executor

    return _install


SCENARIO = {
    "name": "cli-smoke",
    "threads": 2,
    "iterations": 2,
    "requests": [{"name": "ping", "endpoint": "http://svc.test/ping"}],
}


def test_version():
    result = runner.invoke(cli.app, ["version"])

    assert result.exit_code == 0
    assert "perfcore" in result.stdout


def test_passing_scenario_exits_zero(scenario_file, stub_registry, tmp_path):
    executor = stub_registry()
    output = tmp_path / "out" / "result.json"

    result = runner.invoke(cli.app, ["run", str(scenario_file(SCENARIO)), "--output", str(output)])

    assert result.exit_code == 0
    assert len(executor.calls) == 4
    assert "PASS" in result.stdout
    written = json.loads(output.read_text(encoding="utf-8"))
    assert written["verdict"] == "PASS"
    assert len(written["results"]) == 4


def test_failing_scenario_exits_one(scenario_file, stub_registry):
    stub_registry(status=500)

    result = runner.invoke(cli.app, ["run", str(scenario_file(SCENARIO))])

    assert result.exit_code == 1
    assert "FAIL" in result.stdout


def test_threshold_option_overrides_scenario(scenario_file, stub_registry):
    stub_registry(status=500)

    result = runner.invoke(cli.app, ["run", str(scenario_file(SCENARIO)), "--threshold", "0"])

    assert result.exit_code == 0


@pytest.mark.parametrize(
    "document",
    [
        "{not json",
        "[1, 2]",
        {**SCENARIO, "threads": 0},
        {**SCENARIO, "requests": [{"name": "ping", "kind": "jdbc", "statement": "select 1"}]},
    ],
)
def test_configuration_errors_exit_two(scenario_file, stub_registry, document):
    executor = stub_registry()

    result = runner.invoke(cli.app, ["run", str(scenario_file(document))])

    assert result.exit_code == 2
    assert "Configuration error" in result.stdout
    assert executor.calls == []
