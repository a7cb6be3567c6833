# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
DAG (Directed Acyclic Graph) analysis for Archon workflow specs.

Vertices are node ids plus any endpoint an edge names, so dangling edges
still take part in cycle detection.
"""

from collections import deque
from typing import Any, Dict, List, Optional, Union

from .exceptions import DAGCycleError
from .spec import WorkflowSpec


class WorkflowDAG:
    """
    Directed graph built from a workflow spec.

    Detects cycles and groups vertices into levels that can run in parallel.
    """

    def __init__(self, spec: Union[WorkflowSpec, Dict[str, Any]]):
        """
        Build the graph from a spec.

        Args:
            spec: WorkflowSpec or raw spec dictionary
        """
        self.spec = WorkflowSpec.from_dict(spec)
        self.vertices: List[str] = []
        self.graph: Dict[str, Dict[str, List[str]]] = {}
        self._build_graph()

    def _add_vertex(self, vertex_id: str):
        if vertex_id not in self.graph:
            self.vertices.append(vertex_id)
            self.graph[vertex_id] = {"successors": [], "predecessors": []}

    def _build_graph(self):
        """Build adjacency lists, nodes first in spec order"""
        for node in self.spec.nodes:
            self._add_vertex(node.id)

        for edge in self.spec.edges:
            self._add_vertex(edge.source)
            self._add_vertex(edge.target)
            self.graph[edge.source]["successors"].append(edge.target)
            self.graph[edge.target]["predecessors"].append(edge.source)

    def find_cycle(self) -> Optional[List[str]]:
        """
        Find one cycle using iterative DFS.

        Returns:
            Closed path like ``["a", "b", "a"]``, or None when acyclic
        """
        visited = set()
        rec_stack = set()

        for root in self.vertices:
            if root in visited:
                continue

            path = [root]
            visited.add(root)
            rec_stack.add(root)
            stack = [iter(self.graph[root]["successors"])]

            while stack:
                child = next(stack[-1], None)
                if child is None:
                    stack.pop()
                    rec_stack.discard(path.pop())
                    continue

                if child in rec_stack:
                    return path[path.index(child):] + [child]

                if child not in visited:
                    visited.add(child)
                    rec_stack.add(child)
                    path.append(child)
                    stack.append(iter(self.graph[child]["successors"]))

        return None

    def has_cycle(self) -> bool:
        return self.find_cycle() is not None

    def get_execution_levels(self) -> List[List[str]]:
        """
        Get execution levels for parallel execution.

        Returns:
            List of levels, where each level contains vertex ids whose
            predecessors all sit in earlier levels

        Raises:
            DAGCycleError: If the graph has a cycle
        """
        levels = []
        in_degree = {
            vertex_id: len(node["predecessors"]) for vertex_id, node in self.graph.items()
        }
        queue = deque([v for v in self.vertices if in_degree[v] == 0])

        while queue:
            current_level = []
            level_size = len(queue)

            for _ in range(level_size):
                vertex_id = queue.popleft()
                current_level.append(vertex_id)

                for successor in self.graph[vertex_id]["successors"]:
                    in_degree[successor] -= 1
                    if in_degree[successor] == 0:
                        queue.append(successor)

            levels.append(current_level)

        if sum(len(level) for level in levels) != len(self.graph):
            raise DAGCycleError(self.find_cycle() or [])

        return levels

    def get_successors(self, vertex_id: str) -> List[str]:
        return list(self.graph[vertex_id]["successors"])

    def get_predecessors(self, vertex_id: str) -> List[str]:
        return list(self.graph[vertex_id]["predecessors"])


def has_cycle(spec: Union[WorkflowSpec, Dict[str, Any]]) -> bool:
    """Return True when the spec's edges form at least one directed cycle."""
    return WorkflowDAG(spec).has_cycle()


def find_cycle(spec: Union[WorkflowSpec, Dict[str, Any]]) -> Optional[List[str]]:
    return WorkflowDAG(spec).find_cycle()


def execution_levels(spec: Union[WorkflowSpec, Dict[str, Any]]) -> List[List[str]]:
    return WorkflowDAG(spec).get_execution_levels()
