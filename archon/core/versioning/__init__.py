# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Workflow versioning: diff, merge, branches and rollback."""

from .diff import diff_specs
from .manager import VersionManager
from .merge import merge_specs
from .models import (
    BranchStatus,
    ChangeType,
    Conflict,
    MergeOutcome,
    MergeResult,
    MergeStrategy,
    VersionDiff,
    Workflow,
    WorkflowBranch,
    WorkflowVersion,
    increment_version,
)

__all__ = [
    "diff_specs",
    "merge_specs",
    "VersionManager",
    "BranchStatus",
    "ChangeType",
    "Conflict",
    "MergeOutcome",
    "MergeResult",
    "MergeStrategy",
    "VersionDiff",
    "Workflow",
    "WorkflowBranch",
    "WorkflowVersion",
    "increment_version",
]
