# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Two-way spec merge.

The target spec is the starting point. Source nodes missing from the target
are appended, source edges with an unseen (from, to) pair are appended.
Nodes present on both sides with different content are settled in this
order: ``theirs`` (source wins), ``ours`` (target wins), an explicit
resolution keyed by node id, otherwise a ``node_modified`` conflict.
``collaboration_strategy`` follows the same order under the key
``collaboration_strategy``.
"""

import logging
from typing import Any, Dict, Optional, Union

from ..exceptions import ValidationError
from ..spec import CollaborationStrategy, Node, WorkflowSpec
from .models import Conflict, ConflictType, MergeResult, MergeStrategy

logger = logging.getLogger("archon.versioning.merge")

STRATEGY_PROPERTY = "collaboration_strategy"

SpecLike = Union[WorkflowSpec, Dict[str, Any], None]


def parse_strategy(strategy: Union[MergeStrategy, str, None]) -> MergeStrategy:
    if strategy is None:
        return MergeStrategy.AUTO
    try:
        return MergeStrategy(strategy)
    except ValueError:
        raise ValidationError(
            f"Invalid merge strategy: {strategy}",
            field="merge_strategy",
            value=strategy,
            hint="Use one of: auto, ours, theirs",
        )


def _resolved_node(node_id: str, value: Any) -> Node:
    if not isinstance(value, dict):
        raise ValidationError(
            f"Resolution for node {node_id} must be a node object",
            field="conflict_resolution",
            value=value,
        )
    data = dict(value)
    data.setdefault("id", node_id)
    return Node.from_dict(data)


def _resolved_strategy(value: Any) -> CollaborationStrategy:
    try:
        return CollaborationStrategy(value)
    except ValueError:
        raise ValidationError(
            f"Invalid collaboration strategy: {value}",
            field="conflict_resolution",
            value=value,
        )


def merge_specs(
    source: SpecLike,
    target: SpecLike,
    strategy: Union[MergeStrategy, str, None] = MergeStrategy.AUTO,
    conflict_resolution: Optional[Dict[str, Any]] = None,
) -> MergeResult:
    """
    Merge ``source`` into ``target``.

    Args:
        source: Spec being merged in
        target: Spec being merged into
        strategy: auto, ours or theirs
        conflict_resolution: node id (or ``collaboration_strategy``) to the
            value to keep

    Returns:
        MergeResult. ``merged_spec`` is always populated; callers must not
        commit it while ``conflicts`` is non-empty.
    """
    strategy = parse_strategy(strategy)
    resolution = dict(conflict_resolution or {})
    source_spec = WorkflowSpec.from_dict(source)
    target_spec = WorkflowSpec.from_dict(target)

    merged = target_spec.model_copy(deep=True)
    result = MergeResult(merged_spec=merged)

    target_nodes: Dict[str, Node] = {}
    positions: Dict[str, int] = {}
    for index, node in enumerate(merged.nodes):
        target_nodes.setdefault(node.id, node)
        positions.setdefault(node.id, index)

    for node in source_spec.nodes:
        existing = target_nodes.get(node.id)

        if existing is None:
            added = node.model_copy(deep=True)
            merged.nodes.append(added)
            target_nodes[node.id] = added
            positions[node.id] = len(merged.nodes) - 1
            continue

        source_data, target_data = node.to_dict(), existing.to_dict()
        if source_data == target_data:
            continue

        if strategy is MergeStrategy.THEIRS:
            merged.nodes[positions[node.id]] = node.model_copy(deep=True)
            result.resolved.append(node.id)
        elif strategy is MergeStrategy.OURS:
            result.resolved.append(node.id)
        elif resolution.get(node.id):
            merged.nodes[positions[node.id]] = _resolved_node(node.id, resolution[node.id])
            result.resolved.append(node.id)
        else:
            result.conflicts.append(
                Conflict(
                    type=ConflictType.NODE_MODIFIED,
                    node_id=node.id,
                    source=source_data,
                    target=target_data,
                )
            )

    edge_keys = target_spec.edge_keys()
    for edge in source_spec.edges:
        if edge.key not in edge_keys:
            merged.edges.append(edge.model_copy(deep=True))
            edge_keys.add(edge.key)

    if source_spec.collaboration_strategy != target_spec.collaboration_strategy:
        if strategy is MergeStrategy.THEIRS:
            merged.collaboration_strategy = source_spec.collaboration_strategy
            result.resolved.append(STRATEGY_PROPERTY)
        elif strategy is MergeStrategy.OURS:
            result.resolved.append(STRATEGY_PROPERTY)
        elif resolution.get(STRATEGY_PROPERTY):
            merged.collaboration_strategy = _resolved_strategy(resolution[STRATEGY_PROPERTY])
            result.resolved.append(STRATEGY_PROPERTY)
        else:
            result.conflicts.append(
                Conflict(
                    type=ConflictType.PROPERTY_CONFLICT,
                    property=STRATEGY_PROPERTY,
                    source=_strategy_value(source_spec.collaboration_strategy),
                    target=_strategy_value(target_spec.collaboration_strategy),
                )
            )

    result.merged_spec = merged
    logger.debug(
        f"Merge ({strategy.value}): {len(result.resolved)} resolved, "
        f"{len(result.conflicts)} conflicts"
    )
    return result


def _strategy_value(value: Optional[CollaborationStrategy]) -> Optional[str]:
    return value.value if value is not None else None
