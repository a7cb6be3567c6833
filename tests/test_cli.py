# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for the archon command line
"""

import json
import logging

import pytest
import yaml
from click.testing import CliRunner

from archon.core import logger as archon_logger
from cli import cli


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers bound to the runner's streams after each test"""
    yield
    logging.getLogger("archon").handlers.clear()
    archon_logger._loggers.clear()


@pytest.fixture
def cli_runner():
    return CliRunner()


@pytest.fixture
def spec_file(tmp_path, base_spec):
    path = tmp_path / "workflow.yaml"
    path.write_text(yaml.safe_dump(base_spec), encoding="utf-8")
    return path


def _write(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_version(cli_runner):
    result = cli_runner.invoke(cli, ["version"])

    assert result.exit_code == 0
    assert "Archon Workflow Core v1.0.0" in result.output


def test_validate_ok(cli_runner, spec_file):
    result = cli_runner.invoke(cli, ["validate", str(spec_file)])

    assert result.exit_code == 0
    assert "Workflow is valid" in result.output


def test_validate_reports_errors(cli_runner, tmp_path):
    path = _write(
        tmp_path,
        "bad.json",
        {"nodes": [{"id": "a1", "type": "agent", "label": "X", "config": {}}], "edges": []},
    )

    result = cli_runner.invoke(cli, ["validate", str(path)])

    assert result.exit_code != 0
    assert "Agent node missing agent_id" in result.output


def test_validate_unwraps_spec_key(cli_runner, tmp_path, base_spec):
    path = tmp_path / "document.yaml"
    path.write_text(yaml.safe_dump({"name": "triage", "spec": base_spec}), encoding="utf-8")

    result = cli_runner.invoke(cli, ["validate", str(path)])

    assert result.exit_code == 0


def test_info(cli_runner, spec_file):
    result = cli_runner.invoke(cli, ["info", str(spec_file)])

    assert result.exit_code == 0
    assert "Nodes: 2" in result.output
    assert "Execution levels: 2" in result.output
    assert "Collaboration: sequential" in result.output


def test_diff_json(cli_runner, tmp_path, spec_file, base_spec):
    other = dict(base_spec)
    other["nodes"] = base_spec["nodes"] + [{"id": "n3", "type": "tool", "label": "Publish"}]
    other_file = _write(tmp_path, "other.json", other)

    result = cli_runner.invoke(cli, ["diff", str(spec_file), str(other_file), "--output", "json"])

    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["summary"]["nodes_added"] == 1


def test_diff_text(cli_runner, tmp_path, spec_file, base_spec):
    other = dict(base_spec)
    other["edges"] = []
    other_file = _write(tmp_path, "other.json", other)

    result = cli_runner.invoke(cli, ["diff", str(spec_file), str(other_file)])

    assert result.exit_code == 0
    assert "- edge n1 -> n2" in result.output


def test_merge_writes_output(cli_runner, tmp_path, spec_file, base_spec):
    source = dict(base_spec)
    source["nodes"] = base_spec["nodes"] + [{"id": "n3", "type": "tool", "label": "Publish"}]
    source_file = _write(tmp_path, "source.json", source)
    output = tmp_path / "merged.yaml"

    result = cli_runner.invoke(
        cli, ["merge", str(source_file), str(spec_file), "--output", str(output)]
    )

    assert result.exit_code == 0
    merged = yaml.safe_load(output.read_text(encoding="utf-8"))
    assert [n["id"] for n in merged["nodes"]] == ["n1", "n2", "n3"]


def test_merge_conflicts_abort(cli_runner, tmp_path, spec_file, base_spec):
    source = json.loads(json.dumps(base_spec))
    source["nodes"][0]["label"] = "Changed"
    source_file = _write(tmp_path, "source.json", source)

    result = cli_runner.invoke(cli, ["merge", str(source_file), str(spec_file)])
    assert result.exit_code != 0
    assert "Merge conflicts: 1" in result.output

    result = cli_runner.invoke(
        cli, ["merge", str(source_file), str(spec_file), "--strategy", "theirs", "--format", "json"]
    )
    assert result.exit_code == 0
    assert json.loads(result.output)["nodes"][0]["label"] == "Changed"


def test_build_checksum_is_stable(cli_runner, spec_file, tmp_path):
    args = ["build", str(spec_file), "--version", "2.0.0", "--workflow-id", "wf-1"]

    first = cli_runner.invoke(cli, args)
    second = cli_runner.invoke(cli, args + ["--output", str(tmp_path / "artifact.json")])

    assert first.exit_code == 0
    checksum = [l for l in first.output.splitlines() if l.startswith("Checksum:")][0]
    assert checksum in second.output
    artifact = json.loads((tmp_path / "artifact.json").read_text(encoding="utf-8"))
    assert artifact["version"] == "2.0.0"
    assert artifact["workflow_id"] == "wf-1"


def test_bad_config_file(cli_runner, tmp_path):
    config = tmp_path / "archon.yaml"
    config.write_text("store:\n  backend: cassandra\n", encoding="utf-8")

    result = cli_runner.invoke(cli, ["--config", str(config), "version"])

    assert result.exit_code != 0
    assert "Config validation failed" in result.output
