# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Workflow versioning data models."""

import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from ..exceptions import ValidationError
from ..spec import WorkflowSpec


class ChangeType(str, Enum):
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"


class BranchStatus(str, Enum):
    ACTIVE = "active"
    MERGED = "merged"
    ARCHIVED = "archived"


class MergeStrategy(str, Enum):
    """auto: report conflicts; ours: target wins; theirs: source wins"""

    AUTO = "auto"
    OURS = "ours"
    THEIRS = "theirs"


# =============================================================================
# Semantic versions
# =============================================================================


_SEGMENT = re.compile(r"^(\d+)")

_SEGMENT_INDEX = {
    ChangeType.MAJOR: 0,
    ChangeType.MINOR: 1,
    ChangeType.PATCH: 2,
}


def increment_version(version: str, change_type: ChangeType = ChangeType.PATCH) -> str:
    """
    Add one to a single dot-separated segment of ``version``.

    Every other segment is kept as written (``1.2.0.4`` -> ``1.3.0.4`` on a
    minor bump). Segments missing up to the bumped one are filled with 0.
    A pre-release suffix on the bumped segment is dropped: ``1.2.0-rc1``
    gets the patch bump ``1.2.1``.

    Raises:
        ValidationError: If the change type is unknown or the bumped segment
            does not start with a number
    """
    try:
        change_type = ChangeType(change_type)
    except ValueError:
        raise ValidationError(
            f"Invalid change type: {change_type}", field="change_type", value=change_type
        )

    index = _SEGMENT_INDEX[change_type]
    parts = str(version or "").split(".")
    parts += ["0"] * (index + 1 - len(parts))

    match = _SEGMENT.match(parts[index])
    if match is None:
        raise ValidationError(f"Invalid version: {version}", field="version", value=version)
    parts[index] = str(int(match.group(1)) + 1)
    return ".".join(parts)


# =============================================================================
# Records
# =============================================================================


class Workflow(BaseModel):
    """Workflow aggregate. ``spec``/``version`` mirror the latest commit."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    description: str = ""
    status: str = "draft"
    spec: Dict[str, Any] = Field(default_factory=dict)
    version: str = "1.0.0"
    tags: List[str] = Field(default_factory=list)
    deployed_at: Optional[str] = None
    created_date: Optional[str] = None
    updated_date: Optional[str] = None


class WorkflowVersion(BaseModel):
    """Immutable snapshot of a workflow spec."""

    model_config = ConfigDict(extra="allow")

    id: str
    workflow_id: str
    version: str  # Semantic version: 1.0.0
    version_number: int = 1
    spec: WorkflowSpec = Field(default_factory=WorkflowSpec)
    change_summary: str = ""
    change_type: ChangeType = ChangeType.PATCH
    parent_version_id: Optional[str] = None
    branch_id: Optional[str] = None
    created_by: Optional[str] = None
    created_date: Optional[str] = None

    @field_validator("spec", mode="before")
    @classmethod
    def coerce_spec(cls, v):
        return {} if v is None else v

    @field_serializer("spec")
    def serialize_spec(self, spec: WorkflowSpec):
        return spec.to_dict()

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "created_date": self.created_date,
            "change_summary": self.change_summary,
        }

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class WorkflowBranch(BaseModel):
    """Named pointer to a head version."""

    model_config = ConfigDict(extra="allow")

    id: str
    workflow_id: str
    name: str
    description: str = ""
    head_version_id: Optional[str] = None
    base_version_id: Optional[str] = None
    is_protected: bool = False
    is_default: bool = False
    status: BranchStatus = BranchStatus.ACTIVE
    created_by: Optional[str] = None
    merged_at: Optional[str] = None
    merged_by: Optional[str] = None
    created_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# =============================================================================
# Diff / merge results
# =============================================================================


class NodeChange(BaseModel):
    field: str
    before: Any = None
    after: Any = None


class ModifiedNode(BaseModel):
    id: str
    before: Dict[str, Any]
    after: Dict[str, Any]
    changes: List[NodeChange] = Field(default_factory=list)


class NodeDiff(BaseModel):
    added: List[Dict[str, Any]] = Field(default_factory=list)
    removed: List[Dict[str, Any]] = Field(default_factory=list)
    modified: List[ModifiedNode] = Field(default_factory=list)


class EdgeDiff(BaseModel):
    added: List[Dict[str, Any]] = Field(default_factory=list)
    removed: List[Dict[str, Any]] = Field(default_factory=list)


class DiffSummary(BaseModel):
    total_changes: int = 0
    nodes_added: int = 0
    nodes_removed: int = 0
    nodes_modified: int = 0
    edges_added: int = 0
    edges_removed: int = 0


class VersionDiff(BaseModel):
    """Structural diff between two specs."""

    nodes: NodeDiff = Field(default_factory=NodeDiff)
    edges: EdgeDiff = Field(default_factory=EdgeDiff)
    summary: DiffSummary = Field(default_factory=DiffSummary)

    @property
    def is_empty(self) -> bool:
        return self.summary.total_changes == 0


class ConflictType(str, Enum):
    NODE_MODIFIED = "node_modified"
    PROPERTY_CONFLICT = "property_conflict"


class Conflict(BaseModel):
    type: ConflictType
    node_id: Optional[str] = None
    property: Optional[str] = None
    source: Any = None
    target: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        for key in ("node_id", "property"):
            if data[key] is None:
                data.pop(key)
        return data


class MergeResult(BaseModel):
    """Output of a two-way spec merge"""

    merged_spec: WorkflowSpec
    conflicts: List[Conflict] = Field(default_factory=list)
    resolved: List[str] = Field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


class MergeOutcome(BaseModel):
    """Result of a branch merge as seen by callers"""

    status: str
    merged_version: Optional[WorkflowVersion] = None
    conflicts: List[Conflict] = Field(default_factory=list)
    conflicts_resolved: int = 0
