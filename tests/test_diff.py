# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for the structural spec diff

Tests:
- Identity and add/remove symmetry
- Field-level changes
- Edge matching by endpoints
- Output ordering
"""

import copy

from archon.core.spec import WorkflowSpec
from archon.core.versioning import diff_specs


def _ids(nodes):
    return {node["id"] for node in nodes}


def test_diff_identity(base_spec):
    diff = diff_specs(base_spec, copy.deepcopy(base_spec))

    assert diff.is_empty
    assert diff.nodes.added == []
    assert diff.nodes.removed == []
    assert diff.nodes.modified == []
    assert diff.edges.added == []
    assert diff.edges.removed == []


def test_added_and_removed_nodes_are_symmetric(base_spec):
    other = copy.deepcopy(base_spec)
    other["nodes"] = other["nodes"][1:] + [
        {"id": "n3", "type": "skill", "label": "Summarize", "config": {"skill_id": "sum"}}
    ]

    forward = diff_specs(base_spec, other)
    backward = diff_specs(other, base_spec)

    assert _ids(forward.nodes.added) == {"n3"}
    assert _ids(forward.nodes.removed) == {"n1"}
    assert _ids(forward.nodes.added) == _ids(backward.nodes.removed)
    assert _ids(forward.nodes.removed) == _ids(backward.nodes.added)


def test_modified_node_lists_field_changes(base_spec):
    other = copy.deepcopy(base_spec)
    other["nodes"][0]["label"] = "Lead Researcher"
    other["nodes"][0]["config"]["model"] = "large"

    diff = diff_specs(base_spec, other)

    assert diff.summary.nodes_modified == 1
    modified = diff.nodes.modified[0]
    assert modified.id == "n1"
    assert modified.before["label"] == "Researcher"
    assert modified.after["label"] == "Lead Researcher"
    assert [c.field for c in modified.changes] == ["label", "config"]
    assert modified.changes[1].after == {"agent_id": "agent-research", "model": "large"}


def test_position_change_is_a_modification(base_spec):
    other = copy.deepcopy(base_spec)
    other["nodes"][1]["position"] = {"x": 250, "y": 40}

    diff = diff_specs(base_spec, other)

    assert [c.field for c in diff.nodes.modified[0].changes] == ["position"]


def test_unknown_node_key_counts_as_modification(base_spec):
    """Content differs, but no tracked field does"""
    other = copy.deepcopy(base_spec)
    other["nodes"][0]["retries"] = 3

    diff = diff_specs(base_spec, other)

    assert diff.summary.nodes_modified == 1
    assert diff.nodes.modified[0].changes == []


def test_edges_matched_by_endpoints(base_spec):
    other = copy.deepcopy(base_spec)
    other["edges"] = [{"from": "n2", "to": "n1"}]

    diff = diff_specs(base_spec, other)

    assert diff.edges.added == [{"from": "n2", "to": "n1"}]
    assert diff.edges.removed == [{"from": "n1", "to": "n2"}]
    assert diff.summary.edges_added == 1
    assert diff.summary.edges_removed == 1


def test_edge_label_change_is_not_reported(base_spec):
    other = copy.deepcopy(base_spec)
    other["edges"][0]["label"] = "draft"

    assert diff_specs(base_spec, other).is_empty


def test_ordering_follows_inputs():
    a = {"nodes": [{"id": i, "type": "tool", "label": i} for i in ("r2", "r1")]}
    b = {"nodes": [{"id": i, "type": "tool", "label": i} for i in ("z", "y", "x")]}

    diff = diff_specs(a, b)

    assert [n["id"] for n in diff.nodes.added] == ["z", "y", "x"]
    assert [n["id"] for n in diff.nodes.removed] == ["r2", "r1"]


def test_summary_totals(base_spec):
    other = copy.deepcopy(base_spec)
    other["nodes"].append({"id": "n3", "type": "tool", "label": "Fetch"})
    other["edges"].append({"from": "n2", "to": "n3"})
    other["nodes"][0]["label"] = "Renamed"

    summary = diff_specs(base_spec, other).summary

    assert summary.nodes_added == 1
    assert summary.nodes_modified == 1
    assert summary.edges_added == 1
    assert summary.total_changes == 3


def test_accepts_models_and_empty_specs(base_spec):
    diff = diff_specs(None, WorkflowSpec.from_dict(base_spec))

    assert diff.summary.nodes_added == 2
    assert diff.summary.edges_added == 1
