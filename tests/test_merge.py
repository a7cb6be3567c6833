# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import copy

import pytest

from archon.core.exceptions import ValidationError
from archon.core.spec import WorkflowSpec
from archon.core.versioning import merge_specs
from archon.core.versioning.models import ConflictType


@pytest.fixture
def diverged(base_spec):
    """Source and target both edit node n1"""
    source = copy.deepcopy(base_spec)
    target = copy.deepcopy(base_spec)
    source["nodes"][0]["label"] = "Source Researcher"
    target["nodes"][0]["label"] = "Target Researcher"
    return source, target


def _labels(spec: WorkflowSpec):
    return {node.id: node.label for node in spec.nodes}


def test_clean_merge_appends_source_node(base_spec):
    source = copy.deepcopy(base_spec)
    source["nodes"].append({"id": "n3", "type": "tool", "label": "Publish"})
    source["edges"].append({"from": "n2", "to": "n3"})

    result = merge_specs(source, base_spec, "auto")

    assert result.conflicts == []
    assert result.merged_spec.node_ids == ["n1", "n2", "n3"]
    assert result.merged_spec.edge_keys() == {("n1", "n2"), ("n2", "n3")}


def test_identical_specs_merge_to_target(base_spec):
    result = merge_specs(base_spec, copy.deepcopy(base_spec))

    assert not result.has_conflicts
    assert result.resolved == []
    assert result.merged_spec.to_dict() == WorkflowSpec.from_dict(base_spec).to_dict()


def test_auto_reports_node_conflict(diverged):
    source, target = diverged

    result = merge_specs(source, target, "auto")

    assert result.has_conflicts
    conflict = result.conflicts[0]
    assert conflict.type == ConflictType.NODE_MODIFIED
    assert conflict.node_id == "n1"
    assert conflict.source["label"] == "Source Researcher"
    assert conflict.target["label"] == "Target Researcher"
    # merged spec keeps the target node
    assert _labels(result.merged_spec)["n1"] == "Target Researcher"


def test_theirs_takes_source_node(diverged):
    source, target = diverged

    result = merge_specs(source, target, "theirs")

    assert not result.has_conflicts
    assert result.resolved == ["n1"]
    assert _labels(result.merged_spec)["n1"] == "Source Researcher"


def test_ours_keeps_target_node(diverged):
    source, target = diverged

    result = merge_specs(source, target, "ours")

    assert not result.has_conflicts
    assert result.resolved == ["n1"]
    assert _labels(result.merged_spec)["n1"] == "Target Researcher"


def test_ours_returns_target_when_source_adds_nothing(diverged):
    source, target = diverged
    source["collaboration_strategy"] = "parallel"

    result = merge_specs(source, target, "ours")

    assert result.merged_spec.to_dict() == WorkflowSpec.from_dict(target).to_dict()


def test_theirs_returns_source_nodes_without_target_only_nodes(diverged):
    source, target = diverged
    source["nodes"].append({"id": "n3", "type": "tool", "label": "Publish"})

    result = merge_specs(source, target, "theirs")

    assert result.merged_spec.nodes == WorkflowSpec.from_dict(source).nodes


def test_explicit_resolution_is_applied(diverged):
    source, target = diverged
    resolution = {
        "n1": {
            "id": "n1",
            "type": "agent",
            "label": "Agreed Researcher",
            "config": {"agent_id": "agent-research"},
        }
    }

    result = merge_specs(source, target, "auto", resolution)

    assert not result.has_conflicts
    assert result.resolved == ["n1"]
    assert _labels(result.merged_spec)["n1"] == "Agreed Researcher"


def test_resolution_without_id_uses_conflicting_id(diverged):
    source, target = diverged

    result = merge_specs(source, target, "auto", {"n1": {"type": "agent", "label": "X"}})

    assert result.merged_spec.get_node("n1").label == "X"


def test_resolution_must_be_node_object(diverged):
    source, target = diverged

    with pytest.raises(ValidationError):
        merge_specs(source, target, "auto", {"n1": "keep mine"})


def test_collaboration_strategy_conflict(base_spec):
    source = copy.deepcopy(base_spec)
    source["collaboration_strategy"] = "parallel"

    result = merge_specs(source, base_spec, "auto")

    assert len(result.conflicts) == 1
    conflict = result.conflicts[0]
    assert conflict.type == ConflictType.PROPERTY_CONFLICT
    assert conflict.property == "collaboration_strategy"
    assert conflict.source == "parallel"
    assert conflict.target == "sequential"
    assert conflict.to_dict() == {
        "type": "property_conflict",
        "property": "collaboration_strategy",
        "source": "parallel",
        "target": "sequential",
    }


def test_collaboration_strategy_resolution(base_spec):
    source = copy.deepcopy(base_spec)
    source["collaboration_strategy"] = "parallel"

    result = merge_specs(
        source, base_spec, "auto", {"collaboration_strategy": "consensus"}
    )

    assert not result.has_conflicts
    assert result.merged_spec.collaboration_strategy.value == "consensus"


def test_collaboration_strategy_follows_theirs(base_spec):
    source = copy.deepcopy(base_spec)
    source["collaboration_strategy"] = "hierarchical"

    result = merge_specs(source, base_spec, "theirs")

    assert result.merged_spec.collaboration_strategy.value == "hierarchical"
    assert result.resolved == ["collaboration_strategy"]


def test_edges_are_deduplicated_by_endpoints(base_spec):
    source = copy.deepcopy(base_spec)
    source["edges"] = [
        {"from": "n1", "to": "n2", "label": "renamed"},
        {"from": "n2", "to": "n1"},
        {"from": "n2", "to": "n1"},
    ]

    result = merge_specs(source, base_spec)

    edges = [edge.to_dict() for edge in result.merged_spec.edges]
    assert edges == [{"from": "n1", "to": "n2"}, {"from": "n2", "to": "n1"}]


def test_inputs_are_not_mutated(diverged):
    source, target = diverged
    before = copy.deepcopy(target)

    merge_specs(source, target, "theirs")

    assert target == before


def test_invalid_strategy():
    with pytest.raises(ValidationError, match="Invalid merge strategy"):
        merge_specs({}, {}, "mine")
