# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Pipeline handlers: createPipeline, executePipeline
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ...core.pipeline import PipelineRunner
from ..deps import get_pipeline_runner
from ..schemas import CreatePipelineRequest, ExecutePipelineRequest
from ..security import actor_of, get_current_user

router = APIRouter()


@router.post("/createPipeline", status_code=201)
async def create_pipeline(
    body: CreatePipelineRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    pipelines: PipelineRunner = Depends(get_pipeline_runner),
):
    pipeline = await pipelines.create_pipeline(
        name=body.name,
        actor=actor_of(user),
        workflow_id=body.workflow_id,
        stages=body.stages,
    )
    return {"success": True, "pipeline": pipeline}


@router.post("/executePipeline")
async def execute_pipeline(
    body: ExecutePipelineRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    pipelines: PipelineRunner = Depends(get_pipeline_runner),
):
    """Run lint -> test -> build -> deploy (or the pipeline's own stages)"""
    return await pipelines.execute(
        pipeline_id=body.pipeline_id,
        workflow_id=body.workflow_id,
        actor=actor_of(user),
        trigger=body.trigger,
        config=body.config,
    )
