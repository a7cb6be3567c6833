# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
CI pipeline runner.

Stages run one at a time in ascending ``order``. The first failed stage
halts the pipeline; later stages stay ``pending``. Unknown stage types are
recorded as ``skipped``. Runs for the same workflow are serialized.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from ...store.base import Entity, EntityStore
from ..audit import AuditLog, AuditSeverity
from ..config import PipelineConfig
from ..exceptions import NotFoundError, ValidationError
from .models import (
    DEFAULT_STAGES,
    PipelineRun,
    PipelineStage,
    PipelineStatus,
    StageResult,
    StageStatus,
)
from .stages import StageContext, StageExecutor, default_executors

logger = logging.getLogger("archon.pipeline")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_stages(stages: Optional[Sequence[Any]]) -> List[PipelineStage]:
    """
    Validate stage definitions; an empty list means the default stages.

    Raises:
        ValidationError: On malformed stages or duplicate ``order`` or
            ``name`` values
    """
    if not stages:
        return [stage.model_copy(deep=True) for stage in DEFAULT_STAGES]

    try:
        parsed = [
            s if isinstance(s, PipelineStage) else PipelineStage.model_validate(s)
            for s in stages
        ]
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid pipeline stages",
            field="stages",
            errors=[
                {"loc": [str(p) for p in err["loc"]], "msg": err["msg"]}
                for err in e.errors()
            ],
        )

    orders = [s.order for s in parsed]
    if len(orders) != len(set(orders)):
        raise ValidationError("Stage order values must be unique", field="stages")
    names = [s.name for s in parsed]
    if len(names) != len(set(names)):
        raise ValidationError("Stage names must be unique", field="stages")
    return parsed


class PipelineRunner:
    """
    Executes CI pipelines against workflows.

    Usage:
        runner = PipelineRunner(store)
        result = await runner.execute(pipeline_id, workflow_id, actor="dev@example.com")
    """

    def __init__(
        self,
        store: EntityStore,
        audit: Optional[AuditLog] = None,
        config: Optional[PipelineConfig] = None,
        executors: Optional[Dict[str, StageExecutor]] = None,
    ):
        self.store = store
        self.audit = audit or AuditLog(store)
        self.config = config or PipelineConfig()
        self.executors = executors if executors is not None else default_executors()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _workflow_lock(self, workflow_id: str):
        """Hold the run lock for one workflow; dropped once nobody waits on it"""
        lock = self._locks.setdefault(workflow_id, asyncio.Lock())
        self._lock_users[workflow_id] = self._lock_users.get(workflow_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[workflow_id] -= 1
            if not self._lock_users[workflow_id]:
                del self._lock_users[workflow_id]
                del self._locks[workflow_id]

    async def _run_stage(self, stage: PipelineStage, ctx: StageContext) -> StageResult:
        executor = self.executors.get(stage.type)
        if executor is None:
            return StageResult(
                stage=stage.name,
                type=stage.type,
                status=StageStatus.SKIPPED,
                duration_ms=0,
                summary="Unknown stage type",
            )

        started = time.perf_counter()
        try:
            return await executor.execute(stage, ctx)
        except Exception as e:
            logger.error(f"Stage {stage.name} crashed: {e}", exc_info=True)
            return StageResult(
                stage=stage.name,
                type=stage.type,
                status=StageStatus.FAILED,
                duration_ms=max(0, int((time.perf_counter() - started) * 1000)),
                error=str(e),
                summary=f"Stage error: {e}",
            )

    async def run_stages(
        self, stages: Sequence[PipelineStage], ctx: StageContext
    ) -> PipelineRun:
        """Run ``stages`` in order and stop at the first failure."""
        ordered = sorted(stages, key=lambda s: s.order)
        states = {stage.name: StageStatus.PENDING for stage in ordered}
        results: List[StageResult] = []
        status = PipelineStatus.SUCCESS

        started_at = _now()
        started = time.perf_counter()

        for stage in ordered:
            logger.info(f"Executing stage: {stage.name}")
            states[stage.name] = StageStatus.RUNNING

            result = await self._run_stage(stage, ctx)
            states[stage.name] = result.status
            results.append(result)

            if result.status == StageStatus.FAILED:
                status = PipelineStatus.FAILED
                logger.warning(f"Stage {stage.name} failed: {result.summary}")
                break

        return PipelineRun(
            status=status,
            stages=results,
            duration_ms=max(0, int((time.perf_counter() - started) * 1000)),
            started_at=started_at,
            finished_at=_now(),
            stage_states=states,
        )

    async def execute(
        self,
        pipeline_id: Optional[str],
        workflow_id: Optional[str],
        actor: Optional[str],
        trigger: str = "manual",
        config: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Run a stored pipeline against a stored workflow.

        ``config`` is layered over every stage's own config for this run.

        Raises:
            ValidationError: If either id is missing
            NotFoundError: If the pipeline or workflow does not exist
        """
        if not pipeline_id or not workflow_id:
            raise ValidationError("pipeline_id and workflow_id required", status_code=400)

        async with self._workflow_lock(workflow_id):
            pipeline, workflow = await asyncio.gather(
                self.store.get(Entity.CI_PIPELINE, pipeline_id),
                self.store.get(Entity.WORKFLOW, workflow_id),
            )
            if pipeline is None or workflow is None:
                raise NotFoundError("Pipeline or workflow not found")

            stages = parse_stages(pipeline.get("stages"))
            if config:
                for stage in stages:
                    stage.config = {**stage.config, **config}

            ctx = StageContext(
                workflow=workflow, store=self.store, config=self.config, actor=actor
            )
            run = await self.run_stages(stages, ctx)

            await self.store.update(
                Entity.CI_PIPELINE,
                pipeline_id,
                {
                    "last_run": {
                        "status": run.status.value,
                        "started_at": run.started_at,
                        "finished_at": run.finished_at,
                        "duration_ms": run.duration_ms,
                        "trigger": trigger,
                        "stages_completed": run.stages_completed,
                    }
                },
            )

            await self.audit.record(
                action="execute",
                entity=Entity.CI_PIPELINE.value,
                entity_id=pipeline_id,
                actor=actor,
                severity=(
                    AuditSeverity.WARNING
                    if run.status == PipelineStatus.FAILED
                    else AuditSeverity.INFO
                ),
                metadata={
                    "workflow_id": workflow_id,
                    "trigger": trigger,
                    "duration_ms": run.duration_ms,
                    "stages_completed": run.stages_completed,
                },
            )

        logger.info(
            f"Pipeline {pipeline_id} on workflow {workflow_id}: {run.status.value} "
            f"({run.duration_ms}ms)"
        )
        return {
            "status": run.status.value,
            "duration_ms": run.duration_ms,
            "stages": [r.to_dict() for r in run.stages],
            "stage_states": {name: s.value for name, s in run.stage_states.items()},
            "pipeline_id": pipeline_id,
            "workflow_id": workflow_id,
            "timestamp": _now(),
        }

    async def create_pipeline(
        self,
        name: Optional[str],
        actor: Optional[str],
        workflow_id: Optional[str] = None,
        stages: Optional[Sequence[Any]] = None,
    ) -> Dict[str, Any]:
        """Store a pipeline definition. Empty ``stages`` means the defaults."""
        if not name:
            raise ValidationError("Pipeline name is required", field="name")
        if workflow_id:
            await self.store.require(Entity.WORKFLOW, workflow_id)

        parsed = parse_stages(stages) if stages else []
        pipeline = await self.store.create(
            Entity.CI_PIPELINE,
            {
                "name": name,
                "workflow_id": workflow_id,
                "stages": [s.model_dump(mode="json") for s in parsed],
                "created_by": actor,
            },
        )
        await self.audit.record(
            action="create",
            entity=Entity.CI_PIPELINE.value,
            entity_id=pipeline["id"],
            actor=actor,
            metadata={"workflow_id": workflow_id, "stages": len(parsed)},
        )
        return pipeline
