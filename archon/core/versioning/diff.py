# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Structural diff between two workflow specs.

Nodes are matched by id, edges by their (from, to) pair. Edge labels are
not compared.
"""

from typing import Any, Dict, List, Union

from ..spec import WorkflowSpec
from .models import DiffSummary, EdgeDiff, ModifiedNode, NodeChange, NodeDiff, VersionDiff

# Node fields inspected for modifications
TRACKED_FIELDS = ("label", "type", "config", "position")

SpecLike = Union[WorkflowSpec, Dict[str, Any], None]


def detect_node_changes(before: Dict[str, Any], after: Dict[str, Any]) -> List[NodeChange]:
    """List the tracked fields that differ between two node snapshots."""
    changes = []
    for field in TRACKED_FIELDS:
        old, new = before.get(field), after.get(field)
        if old != new:
            changes.append(NodeChange(field=field, before=old, after=new))
    return changes


def diff_specs(spec_a: SpecLike, spec_b: SpecLike) -> VersionDiff:
    """
    Compute what changed going from ``spec_a`` to ``spec_b``.

    Args:
        spec_a: Older spec
        spec_b: Newer spec

    Returns:
        VersionDiff with added/removed/modified nodes, added/removed edges
        and counts
    """
    a = WorkflowSpec.from_dict(spec_a)
    b = WorkflowSpec.from_dict(spec_b)

    nodes_a = {}
    for node in a.nodes:
        nodes_a.setdefault(node.id, node.to_dict())
    nodes_b = {}
    for node in b.nodes:
        nodes_b.setdefault(node.id, node.to_dict())

    node_diff = NodeDiff()
    for node_id, node in nodes_b.items():
        if node_id not in nodes_a:
            node_diff.added.append(node)
            continue
        before = nodes_a[node_id]
        if before != node:
            node_diff.modified.append(
                ModifiedNode(
                    id=node_id,
                    before=before,
                    after=node,
                    changes=detect_node_changes(before, node),
                )
            )

    for node_id, node in nodes_a.items():
        if node_id not in nodes_b:
            node_diff.removed.append(node)

    keys_a = a.edge_keys()
    keys_b = b.edge_keys()
    edge_diff = EdgeDiff(
        added=[e.to_dict() for e in b.edges if e.key not in keys_a],
        removed=[e.to_dict() for e in a.edges if e.key not in keys_b],
    )

    summary = DiffSummary(
        nodes_added=len(node_diff.added),
        nodes_removed=len(node_diff.removed),
        nodes_modified=len(node_diff.modified),
        edges_added=len(edge_diff.added),
        edges_removed=len(edge_diff.removed),
    )
    summary.total_changes = (
        summary.nodes_added
        + summary.nodes_removed
        + summary.nodes_modified
        + summary.edges_added
        + summary.edges_removed
    )

    return VersionDiff(nodes=node_diff, edges=edge_diff, summary=summary)
