# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Request bodies for the /functions handlers.

Required ids are optional here so that a missing id is answered with the
handler's own 400 instead of a schema error.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class MergeBranchRequest(BaseModel):
    source_branch_id: Optional[str] = None
    target_branch_id: Optional[str] = None
    merge_strategy: str = "auto"
    conflict_resolution: Optional[Dict[str, Any]] = None


class CompareVersionsRequest(BaseModel):
    version_id_a: Optional[str] = None
    version_id_b: Optional[str] = None


class ExecutePipelineRequest(BaseModel):
    pipeline_id: Optional[str] = None
    workflow_id: Optional[str] = None
    trigger: str = "manual"
    config: Dict[str, Any] = Field(default_factory=dict)


class RollbackRequest(BaseModel):
    workflow_id: Optional[str] = None
    target_version: Optional[str] = None
    reason: Optional[str] = None


class CreateWorkflowRequest(BaseModel):
    name: Optional[str] = None
    description: str = ""
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    edges: List[Dict[str, Any]] = Field(default_factory=list)
    collaboration_strategy: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class SaveVersionRequest(BaseModel):
    workflow_id: str
    spec: Dict[str, Any]
    change_summary: str = ""
    branch_id: Optional[str] = None
    change_type: str = "patch"


class RestoreVersionRequest(BaseModel):
    workflow_id: str
    version_id: str
    branch_id: Optional[str] = None


class CreateBranchRequest(BaseModel):
    workflow_id: str
    name: str
    description: str = ""
    from_branch_id: Optional[str] = None
    is_protected: bool = False


class ArchiveBranchRequest(BaseModel):
    branch_id: str


class ListVersionsRequest(BaseModel):
    workflow_id: str
    limit: int = Field(default=50, ge=1, le=500)


class CreatePipelineRequest(BaseModel):
    name: Optional[str] = None
    workflow_id: Optional[str] = None
    stages: List[Dict[str, Any]] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response"""

    status: str = "healthy"
    version: str
    store: str
