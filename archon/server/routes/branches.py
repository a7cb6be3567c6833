# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Branch handlers: createBranch, archiveBranch, mergeBranch
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ...core.versioning import VersionManager
from ..deps import get_version_manager
from ..schemas import ArchiveBranchRequest, CreateBranchRequest, MergeBranchRequest
from ..security import actor_of, get_current_user

router = APIRouter()


@router.post("/createBranch", status_code=201)
async def create_branch(
    body: CreateBranchRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    versions: VersionManager = Depends(get_version_manager),
):
    branch = await versions.create_branch(
        workflow_id=body.workflow_id,
        name=body.name,
        actor=actor_of(user),
        description=body.description,
        from_branch_id=body.from_branch_id,
        is_protected=body.is_protected,
    )
    return {"success": True, "branch": branch.to_dict()}


@router.post("/archiveBranch")
async def archive_branch(
    body: ArchiveBranchRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    versions: VersionManager = Depends(get_version_manager),
):
    branch = await versions.archive_branch(body.branch_id, actor=actor_of(user))
    return {"success": True, "branch": branch.to_dict()}


@router.post("/mergeBranch")
async def merge_branch(
    body: MergeBranchRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    versions: VersionManager = Depends(get_version_manager),
):
    """
    Merge one branch into another.

    Unresolved conflicts are answered with 409 and the conflict list; the
    caller resubmits with ``conflict_resolution`` or a strategy.
    """
    outcome = await versions.merge_branch(
        source_branch_id=body.source_branch_id,
        target_branch_id=body.target_branch_id,
        actor=actor_of(user),
        strategy=body.merge_strategy,
        conflict_resolution=body.conflict_resolution,
    )

    if outcome.status == "conflicts":
        return JSONResponse(
            status_code=409,
            content={
                "status": "conflicts",
                "conflicts": [c.to_dict() for c in outcome.conflicts],
                "message": "Merge conflicts detected. Please provide conflict resolution.",
            },
        )

    return {
        "status": "success",
        "merged_version": outcome.merged_version.to_dict(),
        "conflicts_resolved": outcome.conflicts_resolved,
    }
