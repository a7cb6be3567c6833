# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for the CI pipeline runner and its stages

Tests:
- Lint rules
- Test stage sub-checks
- Deterministic build artifacts
- Deploy upsert and URL rendering
- Runner ordering, halting and bookkeeping
"""

import asyncio
import hashlib

import pytest

from archon.core.config import PipelineConfig
from archon.core.exceptions import NotFoundError, ValidationError
from archon.core.pipeline import (
    PipelineRunner,
    StageExecutor,
    build_artifacts,
    canonical_json,
    default_executors,
    lint_spec,
    parse_stages,
    render_deploy_url,
)
from archon.core.pipeline.models import IssueSeverity, StageStatus
from archon.store import Entity


async def _workflow_and_pipeline(versions, runner, spec, stages=None):
    workflow, _, _ = await versions.create_workflow(
        name="Support triage",
        actor="alice@example.com",
        nodes=spec["nodes"],
        edges=spec["edges"],
    )
    pipeline = await runner.create_pipeline(
        name="ci", actor="alice@example.com", workflow_id=workflow.id, stages=stages
    )
    return workflow, pipeline


class ExplodingStage(StageExecutor):
    stage_type = "build"

    async def execute(self, stage, ctx):
        raise RuntimeError("disk full")


class SlowStage(StageExecutor):
    stage_type = "lint"

    def __init__(self, events):
        self.events = events

    async def execute(self, stage, ctx):
        self.events.append(("start", ctx.actor))
        await asyncio.sleep(0.01)
        self.events.append(("end", ctx.actor))
        return self._result(stage, status=StageStatus.PASSED, duration_ms=10)


class TestLint:
    def test_valid_spec_has_no_issues(self, base_spec):
        assert lint_spec(base_spec) == []

    def test_agent_without_agent_id_is_error(self):
        issues = lint_spec(
            {"nodes": [{"id": "a1", "type": "agent", "label": "X", "config": {}}], "edges": []}
        )

        assert len(issues) == 1
        assert issues[0].severity == IssueSeverity.ERROR
        assert issues[0].node_id == "a1"
        assert "agent_id" in issues[0].message

    def test_skill_without_skill_id_is_warning(self):
        issues = lint_spec({"nodes": [{"id": "s1", "type": "skill", "label": "Summarize"}]})

        assert [i.severity for i in issues] == [IssueSeverity.WARNING]

    def test_missing_fields_and_duplicates(self):
        issues = lint_spec(
            {
                "nodes": [
                    {"id": "t1", "type": "tool", "label": ""},
                    {"id": "t1", "type": "tool", "label": "Again"},
                ]
            }
        )

        messages = [i.message for i in issues]
        assert "Invalid node structure: t1" in messages
        assert "Duplicate node id: t1" in messages

    def test_cycle_is_single_error(self):
        issues = lint_spec(
            {
                "nodes": [
                    {"id": "a", "type": "tool", "label": "A"},
                    {"id": "b", "type": "tool", "label": "B"},
                ],
                "edges": [{"from": "a", "to": "b"}, {"from": "b", "to": "a"}],
            }
        )

        assert len(issues) == 1
        assert issues[0].message == "Circular dependency detected in workflow"
        assert issues[0].node_id == "a"

    def test_structural_errors(self):
        assert "nodes must be an array" in lint_spec({"nodes": {"a": 1}})[0].message
        assert "spec must be an object" in lint_spec(["not", "a", "spec"])[0].message

    def test_numeric_agent_id_passes(self):
        issues = lint_spec(
            {"nodes": [{"id": "a1", "type": "agent", "label": "X", "config": {"agent_id": 42}}]}
        )

        assert issues == []

    def test_loose_node_configs_never_block(self):
        issues = lint_spec(
            {
                "nodes": [
                    {"id": "w", "type": "webhook", "label": "Hook", "config": {"method": None}},
                    {
                        "id": "r",
                        "type": "router",
                        "label": "Route",
                        "config": {"routes": {"yes": "w", "no": "end"}},
                    },
                ],
                "edges": [{"from": "r", "to": "w"}],
            }
        )

        assert [i.severity for i in issues] == [IssueSeverity.WARNING]
        assert issues[0].node_id == "r"
        assert issues[0].message.startswith("Unexpected router config")


class TestBuild:
    def test_checksum_is_deterministic(self, base_spec):
        workflow = {"id": "wf-1", "version": "1.2.0", "spec": base_spec}

        first = build_artifacts(workflow)
        second = build_artifacts(dict(workflow))

        assert first.checksum == second.checksum
        assert first.size_bytes == second.size_bytes
        assert len(first.checksum) == 64

    def test_checksum_covers_canonical_content(self, base_spec):
        artifacts = build_artifacts({"id": "wf-1", "version": "1.2.0", "spec": base_spec})

        spec = dict(base_spec)
        spec["metadata"] = {"build_version": "1.2.0", "execution_levels": [["n1"], ["n2"]]}
        content = {"workflow_id": "wf-1", "version": "1.2.0", "spec": spec}
        encoded = canonical_json(content).encode("utf-8")

        assert artifacts.checksum == hashlib.sha256(encoded).hexdigest()
        assert artifacts.size_bytes == len(encoded)

    def test_version_changes_checksum(self, base_spec):
        a = build_artifacts({"id": "wf-1", "version": "1.0.0", "spec": base_spec})
        b = build_artifacts({"id": "wf-1", "version": "1.0.1", "spec": base_spec})

        assert a.checksum != b.checksum

    def test_build_never_fails_on_cycles(self):
        spec = {
            "nodes": [{"id": "a", "type": "tool", "label": "A"}],
            "edges": [{"from": "a", "to": "a"}],
        }

        artifacts = build_artifacts({"id": "wf", "version": "1.0.0", "spec": spec})

        assert '"execution_levels": []' in artifacts.workflow_json

    def test_input_is_not_mutated(self, base_spec):
        build_artifacts({"id": "wf", "version": "1.0.0", "spec": base_spec})

        assert "metadata" not in base_spec


class TestStages:
    def test_parse_stages_defaults(self):
        stages = parse_stages([])

        assert [(s.name, s.order) for s in stages] == [
            ("lint", 1),
            ("test", 2),
            ("build", 3),
            ("deploy", 4),
        ]

    def test_duplicate_orders_rejected(self):
        with pytest.raises(ValidationError):
            parse_stages(
                [
                    {"name": "a", "type": "lint", "order": 1},
                    {"name": "b", "type": "test", "order": 1},
                ]
            )

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_stages(
                [
                    {"name": "check", "type": "lint", "order": 1},
                    {"name": "check", "type": "build", "order": 2},
                ]
            )
        assert exc_info.value.message == "Stage names must be unique"

    def test_render_deploy_url(self):
        url = render_deploy_url(
            PipelineConfig().deploy_url_template, environment="production", workflow_id="wf-1"
        )

        assert url == "https://production.archon.app/workflows/wf-1"

    def test_default_executors(self):
        assert sorted(default_executors()) == ["build", "deploy", "lint", "test"]


class TestPipelineRunner:
    @pytest.mark.asyncio
    async def test_full_run_deploys(self, versions, runner, store, base_spec, sample_agents):
        await sample_agents()
        workflow, pipeline = await _workflow_and_pipeline(versions, runner, base_spec)

        result = await runner.execute(pipeline["id"], workflow.id, actor="alice@example.com")

        assert result["status"] == "success"
        assert [s["stage"] for s in result["stages"]] == ["lint", "test", "build", "deploy"]
        assert all(s["status"] == "passed" for s in result["stages"])
        assert result["stage_states"] == {
            "lint": "passed",
            "test": "passed",
            "build": "passed",
            "deploy": "passed",
        }
        assert result["duration_ms"] >= 0

        test_stage = result["stages"][1]
        assert [t["name"] for t in test_stage["tests"]] == [
            "Dry Run Execution",
            "Schema Validation",
            "Agent Availability: Researcher",
            "Agent Availability: Writer",
        ]
        assert store.count(Entity.RUN) == 0

        deploy = result["stages"][3]
        assert deploy["environment"] == "staging"
        assert deploy["url"] == f"https://staging.archon.app/workflows/{workflow.id}"

        deployments = await store.filter(Entity.DEPLOYMENT_ENVIRONMENT, {"workflow_id": workflow.id})
        assert len(deployments) == 1
        assert deployments[0]["status"] == "healthy"
        assert deployments[0]["deployed_by"] == "alice@example.com"

        refreshed = await store.get(Entity.WORKFLOW, workflow.id)
        assert refreshed["deployed_at"]

        stored = await store.get(Entity.CI_PIPELINE, pipeline["id"])
        assert stored["last_run"]["status"] == "success"
        assert stored["last_run"]["stages_completed"] == 4
        assert stored["last_run"]["trigger"] == "manual"

        audit = await store.filter(Entity.AUDIT, {"action": "execute"})
        assert len(audit) == 1

    @pytest.mark.asyncio
    async def test_halts_on_first_failure(self, versions, runner, store, base_spec):
        # no Agent records, so the test stage fails
        workflow, pipeline = await _workflow_and_pipeline(versions, runner, base_spec)

        result = await runner.execute(pipeline["id"], workflow.id, actor="ci")

        assert result["status"] == "failed"
        assert [s["stage"] for s in result["stages"]] == ["lint", "test"]
        assert result["stages"][1]["failed"] == 2
        assert result["stage_states"]["build"] == "pending"
        assert result["stage_states"]["deploy"] == "pending"
        assert await store.filter(Entity.DEPLOYMENT_ENVIRONMENT) == []

        audit = await store.filter(Entity.AUDIT, {"action": "execute"})
        assert audit[0]["severity"] == "warning"

    @pytest.mark.asyncio
    async def test_lint_failure_stops_pipeline(self, versions, runner):
        spec = {"nodes": [{"id": "a1", "type": "agent", "label": "X", "config": {}}], "edges": []}
        workflow, pipeline = await _workflow_and_pipeline(versions, runner, spec)

        result = await runner.execute(pipeline["id"], workflow.id, actor="ci")

        assert result["status"] == "failed"
        assert len(result["stages"]) == 1
        assert result["stages"][0]["status"] == "failed"
        assert result["stages"][0]["issues"][0]["severity"] == "error"

    @pytest.mark.asyncio
    async def test_stages_run_in_order(self, versions, runner, base_spec):
        stages = [
            {"name": "package", "type": "build", "order": 2},
            {"name": "check", "type": "lint", "order": 1},
        ]
        workflow, pipeline = await _workflow_and_pipeline(versions, runner, base_spec, stages)

        result = await runner.execute(pipeline["id"], workflow.id, actor="ci")

        assert [s["stage"] for s in result["stages"]] == ["check", "package"]
        assert result["status"] == "success"

    @pytest.mark.asyncio
    async def test_unknown_stage_is_skipped(self, versions, runner, base_spec):
        stages = [
            {"name": "lint", "type": "lint", "order": 1},
            {"name": "notify", "type": "slack", "order": 2},
        ]
        workflow, pipeline = await _workflow_and_pipeline(versions, runner, base_spec, stages)

        result = await runner.execute(pipeline["id"], workflow.id, actor="ci")

        assert result["status"] == "success"
        assert result["stages"][1]["status"] == "skipped"
        assert result["stages"][1]["summary"] == "Unknown stage type"

    @pytest.mark.asyncio
    async def test_deploy_upserts_per_environment(
        self, versions, runner, store, base_spec, sample_agents
    ):
        await sample_agents()
        stages = [{"name": "deploy", "type": "deploy", "order": 1}]
        workflow, pipeline = await _workflow_and_pipeline(versions, runner, base_spec, stages)

        await runner.execute(pipeline["id"], workflow.id, actor="ci")
        await runner.execute(pipeline["id"], workflow.id, actor="ci")
        await runner.execute(
            pipeline["id"], workflow.id, actor="ci", config={"environment": "production"}
        )

        deployments = await store.filter(
            Entity.DEPLOYMENT_ENVIRONMENT, {"workflow_id": workflow.id}, sort="name"
        )
        assert [d["name"] for d in deployments] == ["production", "staging"]
        assert deployments[0]["type"] == "production"
        assert deployments[1]["type"] == "staging"

    @pytest.mark.asyncio
    async def test_bad_url_template_fails_deploy(self, versions, store, base_spec):
        runner = PipelineRunner(store, config=PipelineConfig(deploy_url_template="{{ region }}"))
        stages = [{"name": "deploy", "type": "deploy", "order": 1}]
        workflow, pipeline = await _workflow_and_pipeline(versions, runner, base_spec, stages)

        result = await runner.execute(pipeline["id"], workflow.id, actor="ci")

        assert result["status"] == "failed"
        assert "region" in result["stages"][0]["error"]

    @pytest.mark.asyncio
    async def test_crashing_stage_is_reported(self, versions, store, base_spec):
        runner = PipelineRunner(store, executors={"build": ExplodingStage()})
        stages = [{"name": "build", "type": "build", "order": 1}]
        workflow, pipeline = await _workflow_and_pipeline(versions, runner, base_spec, stages)

        result = await runner.execute(pipeline["id"], workflow.id, actor="ci")

        assert result["status"] == "failed"
        assert result["stages"][0]["error"] == "disk full"

    @pytest.mark.asyncio
    async def test_missing_ids(self, runner):
        with pytest.raises(ValidationError) as exc_info:
            await runner.execute(None, "wf", actor="ci")
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_pipeline(self, versions, runner, base_spec):
        workflow, _ = await _workflow_and_pipeline(versions, runner, base_spec)

        with pytest.raises(NotFoundError, match="Pipeline or workflow not found"):
            await runner.execute("missing", workflow.id, actor="ci")

    @pytest.mark.asyncio
    async def test_create_pipeline_requires_name(self, runner):
        with pytest.raises(ValidationError):
            await runner.create_pipeline(name="", actor="ci")

    @pytest.mark.asyncio
    async def test_runs_on_one_workflow_are_serialized(self, versions, store, base_spec):
        events = []
        runner = PipelineRunner(store, executors={"lint": SlowStage(events)})
        stages = [{"name": "lint", "type": "lint", "order": 1}]
        workflow, pipeline = await _workflow_and_pipeline(versions, runner, base_spec, stages)

        await asyncio.gather(
            runner.execute(pipeline["id"], workflow.id, actor="first"),
            runner.execute(pipeline["id"], workflow.id, actor="second"),
        )

        assert events == [
            ("start", "first"),
            ("end", "first"),
            ("start", "second"),
            ("end", "second"),
        ]
        assert runner._locks == {}

    @pytest.mark.asyncio
    async def test_run_locks_are_released(self, runner):
        for index in range(20):
            with pytest.raises(NotFoundError):
                await runner.execute("missing", f"wf-{index}", actor="ci")

        assert runner._locks == {}
        assert runner._lock_users == {}
