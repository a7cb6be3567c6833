# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Archon Core - Init file

Exports the spec model, DAG analysis and the error hierarchy.
Versioning and pipelines live in their own subpackages.
"""

from .dag import WorkflowDAG, execution_levels, find_cycle, has_cycle
from .exceptions import (
    ArchonError,
    ConcurrentUpdateError,
    ConfigError,
    DAGCycleError,
    DAGError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from .spec import Edge, Node, NodeType, WorkflowSpec, load_spec

__all__ = [
    "WorkflowDAG",
    "execution_levels",
    "find_cycle",
    "has_cycle",
    "ArchonError",
    "ConcurrentUpdateError",
    "ConfigError",
    "DAGCycleError",
    "DAGError",
    "ForbiddenError",
    "NotFoundError",
    "ValidationError",
    "Edge",
    "Node",
    "NodeType",
    "WorkflowSpec",
    "load_spec",
]
