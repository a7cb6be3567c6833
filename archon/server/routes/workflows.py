# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Workflow handlers: createWorkflow, rollbackDeployment
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ...core.versioning import VersionManager
from ..deps import get_version_manager, trace_id_of
from ..schemas import CreateWorkflowRequest, RollbackRequest
from ..security import actor_of, get_current_user

router = APIRouter()


@router.post("/createWorkflow", status_code=201)
async def create_workflow(
    body: CreateWorkflowRequest,
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    versions: VersionManager = Depends(get_version_manager),
):
    """Create a workflow with its initial version and main branch"""
    workflow, version, branch = await versions.create_workflow(
        name=body.name,
        actor=actor_of(user),
        description=body.description,
        nodes=body.nodes,
        edges=body.edges,
        collaboration_strategy=body.collaboration_strategy,
        tags=body.tags,
    )

    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "data": {
                "id": workflow.id,
                "name": workflow.name,
                "description": workflow.description,
                "version": workflow.version,
                "version_id": version.id,
                "nodes_count": len(version.spec.nodes),
                "estimated_cost_cents": workflow.spec.get("estimated_cost_cents", 0),
                "default_branch_id": branch.id,
            },
        },
        headers={"X-Trace-Id": trace_id_of(request)},
    )


@router.post("/rollbackDeployment")
async def rollback_deployment(
    body: RollbackRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    versions: VersionManager = Depends(get_version_manager),
):
    """Roll a workflow back to an earlier version"""
    return await versions.rollback(
        workflow_id=body.workflow_id,
        target_version=body.target_version,
        actor=actor_of(user),
        role=user.get("role"),
        reason=body.reason,
    )
