# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Version handlers: saveVersion, restoreVersion, listVersions, compareVersions
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ...core.versioning import VersionManager
from ..deps import get_version_manager
from ..schemas import (
    CompareVersionsRequest,
    ListVersionsRequest,
    RestoreVersionRequest,
    SaveVersionRequest,
)
from ..security import actor_of, get_current_user

router = APIRouter()


@router.post("/saveVersion", status_code=201)
async def save_version(
    body: SaveVersionRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    versions: VersionManager = Depends(get_version_manager),
):
    version = await versions.save_version(
        workflow_id=body.workflow_id,
        spec=body.spec,
        actor=actor_of(user),
        change_summary=body.change_summary,
        branch_id=body.branch_id,
        change_type=body.change_type,
    )
    return {"success": True, "version": version.to_dict()}


@router.post("/restoreVersion", status_code=201)
async def restore_version(
    body: RestoreVersionRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    versions: VersionManager = Depends(get_version_manager),
):
    """Commit an old version's spec as the new head"""
    version = await versions.restore_version(
        workflow_id=body.workflow_id,
        version_id=body.version_id,
        actor=actor_of(user),
        branch_id=body.branch_id,
    )
    return {"success": True, "version": version.to_dict()}


@router.post("/listVersions")
async def list_versions(
    body: ListVersionsRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    versions: VersionManager = Depends(get_version_manager),
):
    await versions.get_workflow(body.workflow_id)
    items = await versions.list_versions(body.workflow_id, limit=body.limit)
    return {"versions": [v.to_dict() for v in items]}


@router.post("/compareVersions")
async def compare_versions(
    body: CompareVersionsRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    versions: VersionManager = Depends(get_version_manager),
):
    """Structural diff of two versions"""
    return await versions.compare_versions(body.version_id_a, body.version_id_b)
