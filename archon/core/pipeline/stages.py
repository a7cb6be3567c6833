# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Pipeline stage executors: lint, test, build, deploy.

Each executor turns a stage definition and the workflow snapshot into a
StageResult. Expected failures (lint errors, failed checks, store errors
during deploy) are reported in the result, not raised.
"""

import copy
import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import jinja2
from pydantic import ValidationError as PydanticValidationError

from ...store.base import Entity, EntityStore
from ..config import PipelineConfig
from ..dag import WorkflowDAG
from ..exceptions import ArchonError, DAGCycleError
from ..spec import NodeType, WorkflowSpec
from .models import (
    BuildArtifacts,
    CheckResult,
    IssueSeverity,
    LintIssue,
    PipelineStage,
    StageResult,
    StageStatus,
    StageType,
)

logger = logging.getLogger("archon.pipeline")


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StageContext:
    """What a stage sees: the workflow snapshot and the store"""

    workflow: Dict[str, Any]
    store: EntityStore
    config: PipelineConfig
    actor: Optional[str] = None

    @property
    def workflow_id(self) -> Optional[str]:
        return self.workflow.get("id")

    @property
    def spec(self) -> Any:
        return self.workflow.get("spec")


class StageExecutor(ABC):
    """Base class for stage executors"""

    stage_type: str = ""

    @abstractmethod
    async def execute(self, stage: PipelineStage, ctx: StageContext) -> StageResult:
        """Run the stage and report its outcome"""

    def _result(self, stage: PipelineStage, **fields) -> StageResult:
        return StageResult(stage=stage.name, type=stage.type, **fields)


# =============================================================================
# Lint
# =============================================================================


def _structural_error(reason: str) -> List[LintIssue]:
    return [LintIssue(severity=IssueSeverity.ERROR, message=f"Invalid spec structure: {reason}")]


def lint_spec(spec_data: Any) -> List[LintIssue]:
    """
    Static checks on a raw spec document.

    Errors: node without id/type/label, duplicate node id, agent node
    without ``config.agent_id``, a cycle.
    Warnings: skill node without ``config.skill_id``, node config that
    does not fit the structured model for its type.
    """
    if spec_data is None:
        spec_data = {}
    if not isinstance(spec_data, dict):
        return _structural_error("spec must be an object")
    for key in ("nodes", "edges"):
        value = spec_data.get(key)
        if value is not None and not isinstance(value, list):
            return _structural_error(f"{key} must be an array")

    try:
        spec = WorkflowSpec.from_dict(spec_data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first["loc"])
        return _structural_error(f"{location}: {first['msg']}")

    issues: List[LintIssue] = []
    seen = set()

    for node in spec.nodes:
        if not node.id or not node.type or not node.label:
            issues.append(
                LintIssue(
                    severity=IssueSeverity.ERROR,
                    message=f"Invalid node structure: {node.id or 'unknown'}",
                    node_id=node.id or None,
                )
            )

        if node.id and node.id in seen:
            issues.append(
                LintIssue(
                    severity=IssueSeverity.ERROR,
                    message=f"Duplicate node id: {node.id}",
                    node_id=node.id,
                )
            )
        seen.add(node.id)

        if node.type == NodeType.AGENT.value and not node.config.get("agent_id"):
            issues.append(
                LintIssue(
                    severity=IssueSeverity.ERROR,
                    message=f"Agent node missing agent_id: {node.label}",
                    node_id=node.id or None,
                )
            )

        if node.type == NodeType.SKILL.value and not node.config.get("skill_id"):
            issues.append(
                LintIssue(
                    severity=IssueSeverity.WARNING,
                    message=f"Skill node missing skill_id: {node.label}",
                    node_id=node.id or None,
                )
            )

        try:
            node.typed_config()
        except PydanticValidationError as e:
            issues.append(
                LintIssue(
                    severity=IssueSeverity.WARNING,
                    message=f"Unexpected {node.type} config: {e.errors()[0]['msg']}",
                    node_id=node.id or None,
                )
            )

    cycle = WorkflowDAG(spec).find_cycle()
    if cycle:
        issues.append(
            LintIssue(
                severity=IssueSeverity.ERROR,
                message="Circular dependency detected in workflow",
                node_id=cycle[0],
            )
        )

    return issues


class LintStage(StageExecutor):
    stage_type = StageType.LINT.value

    async def execute(self, stage: PipelineStage, ctx: StageContext) -> StageResult:
        started = time.perf_counter()
        issues = lint_spec(ctx.spec)
        errors = [i for i in issues if i.severity == IssueSeverity.ERROR]

        return self._result(
            stage,
            status=StageStatus.FAILED if errors else StageStatus.PASSED,
            duration_ms=_elapsed_ms(started),
            issues=issues,
            summary=f"{len(issues)} issues found ({len(errors)} errors)",
        )


# =============================================================================
# Test
# =============================================================================


class TestStage(StageExecutor):
    """Dry run, schema shape and agent availability checks"""

    __test__ = False

    stage_type = StageType.TEST.value

    async def _dry_run(self, ctx: StageContext) -> CheckResult:
        started = time.perf_counter()
        try:
            run = await ctx.store.create(
                Entity.RUN,
                {
                    "workflow_id": ctx.workflow_id,
                    "status": "pending",
                    "trigger": "ci_test",
                    "dry_run": True,
                },
            )
            await ctx.store.delete(Entity.RUN, run["id"])
        except ArchonError as e:
            return CheckResult(
                name="Dry Run Execution",
                status=StageStatus.FAILED,
                duration_ms=_elapsed_ms(started),
                error=e.message,
            )
        return CheckResult(
            name="Dry Run Execution", status=StageStatus.PASSED, duration_ms=_elapsed_ms(started)
        )

    @staticmethod
    def _schema_check(spec: Any) -> CheckResult:
        started = time.perf_counter()
        valid = (
            isinstance(spec, dict)
            and isinstance(spec.get("nodes"), list)
            and isinstance(spec.get("edges"), list)
        )
        return CheckResult(
            name="Schema Validation",
            status=StageStatus.PASSED if valid else StageStatus.FAILED,
            duration_ms=_elapsed_ms(started),
            error=None if valid else "spec must contain nodes and edges arrays",
        )

    async def _agent_check(self, node: Dict[str, Any], ctx: StageContext) -> CheckResult:
        started = time.perf_counter()
        name = f"Agent Availability: {node.get('label') or node.get('id')}"
        config = node.get("config") if isinstance(node.get("config"), dict) else {}
        agent_id = config.get("agent_id")

        if not agent_id:
            return CheckResult(
                name=name,
                status=StageStatus.FAILED,
                duration_ms=_elapsed_ms(started),
                error="agent_id not configured",
            )
        try:
            agent = await ctx.store.get(Entity.AGENT, str(agent_id))
        except ArchonError as e:
            return CheckResult(
                name=name, status=StageStatus.FAILED, duration_ms=_elapsed_ms(started), error=e.message
            )
        return CheckResult(
            name=name,
            status=StageStatus.PASSED if agent else StageStatus.FAILED,
            duration_ms=_elapsed_ms(started),
            error=None if agent else f"Agent {agent_id} not found",
        )

    async def execute(self, stage: PipelineStage, ctx: StageContext) -> StageResult:
        started = time.perf_counter()
        spec = ctx.spec

        checks = [await self._dry_run(ctx), self._schema_check(spec)]

        nodes = spec.get("nodes") if isinstance(spec, dict) else None
        for node in nodes if isinstance(nodes, list) else []:
            if isinstance(node, dict) and node.get("type") == NodeType.AGENT.value:
                checks.append(await self._agent_check(node, ctx))

        failed = [c for c in checks if c.status == StageStatus.FAILED]
        return self._result(
            stage,
            status=StageStatus.FAILED if failed else StageStatus.PASSED,
            duration_ms=_elapsed_ms(started),
            tests=checks,
            passed=len(checks) - len(failed),
            failed=len(failed),
            total=len(checks),
            summary=f"{len(checks)} tests, {len(failed)} failed",
        )


# =============================================================================
# Build
# =============================================================================


def canonical_json(data: Any) -> str:
    """Stable JSON: sorted keys, compact separators"""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def build_artifacts(workflow: Dict[str, Any]) -> BuildArtifacts:
    """
    Produce the deployable snapshot of a workflow.

    The checksum covers ``{workflow_id, version, spec}`` with build metadata
    and no timestamps, so building the same workflow twice yields the same
    checksum.
    """
    raw_spec = workflow.get("spec")
    spec_data = copy.deepcopy(raw_spec) if isinstance(raw_spec, dict) else {}

    try:
        levels = WorkflowDAG(spec_data).get_execution_levels()
    except (DAGCycleError, PydanticValidationError):
        levels = []

    metadata = spec_data.get("metadata")
    metadata = dict(metadata) if isinstance(metadata, dict) else {}
    metadata["build_version"] = workflow.get("version")
    metadata["execution_levels"] = levels
    spec_data["metadata"] = metadata

    content = {
        "workflow_id": workflow.get("id"),
        "version": workflow.get("version"),
        "spec": spec_data,
    }
    encoded = canonical_json(content).encode("utf-8")

    return BuildArtifacts(
        workflow_json=json.dumps(content, indent=2, sort_keys=True, ensure_ascii=False),
        size_bytes=len(encoded),
        checksum=hashlib.sha256(encoded).hexdigest(),
        built_at=_now(),
    )


class BuildStage(StageExecutor):
    stage_type = StageType.BUILD.value

    async def execute(self, stage: PipelineStage, ctx: StageContext) -> StageResult:
        started = time.perf_counter()
        artifacts = build_artifacts(ctx.workflow)
        return self._result(
            stage,
            status=StageStatus.PASSED,
            duration_ms=_elapsed_ms(started),
            artifacts=artifacts,
            summary=f"Built workflow ({artifacts.size_bytes} bytes)",
        )


# =============================================================================
# Deploy
# =============================================================================

_templates = jinja2.Environment(undefined=jinja2.StrictUndefined)


def render_deploy_url(template: str, **context) -> str:
    """Render the access URL template for a deployment"""
    return _templates.from_string(template).render(**context)


class DeployStage(StageExecutor):
    """Upsert the environment's deployment record and activate the workflow"""

    stage_type = StageType.DEPLOY.value

    async def execute(self, stage: PipelineStage, ctx: StageContext) -> StageResult:
        started = time.perf_counter()
        environment = stage.config.get("environment") or ctx.config.default_environment
        workflow_id = ctx.workflow_id
        version = ctx.workflow.get("version")

        try:
            url = render_deploy_url(
                ctx.config.deploy_url_template,
                environment=environment,
                workflow_id=workflow_id,
                version=version,
            )

            fields = {
                "type": "production" if environment == "production" else "staging",
                "version": version,
                "config": stage.config,
                "deployed_at": _now(),
                "deployed_by": ctx.actor or ctx.config.deployed_by,
                "status": "healthy",
                "url": url,
            }
            existing = await ctx.store.filter(
                Entity.DEPLOYMENT_ENVIRONMENT,
                {"workflow_id": workflow_id, "name": environment},
                limit=1,
            )
            if existing:
                deployment = await ctx.store.update(
                    Entity.DEPLOYMENT_ENVIRONMENT, existing[0]["id"], fields
                )
            else:
                deployment = await ctx.store.create(
                    Entity.DEPLOYMENT_ENVIRONMENT,
                    {"name": environment, "workflow_id": workflow_id, **fields},
                )

            await ctx.store.update(
                Entity.WORKFLOW, workflow_id, {"status": "active", "deployed_at": _now()}
            )
        except (ArchonError, jinja2.TemplateError) as e:
            message = e.message if isinstance(e, ArchonError) else str(e)
            logger.error(f"Deploy to {environment} failed: {message}")
            return self._result(
                stage,
                status=StageStatus.FAILED,
                duration_ms=_elapsed_ms(started),
                error=message,
                summary=f"Deploy failed: {message}",
            )

        logger.info(f"Deployed workflow {workflow_id} {version} to {environment}")
        return self._result(
            stage,
            status=StageStatus.PASSED,
            duration_ms=_elapsed_ms(started),
            deployment_id=deployment["id"],
            environment=environment,
            url=url,
            summary=f"Deployed to {environment}",
        )


def default_executors() -> Dict[str, StageExecutor]:
    executors = [LintStage(), TestStage(), BuildStage(), DeployStage()]
    return {executor.stage_type: executor for executor in executors}
