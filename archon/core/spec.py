# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Workflow specification models.

A spec is the node/edge JSON document describing a workflow DAG. Edges use
the wire keys ``from``/``to``. Unknown keys on the spec, on nodes and on edges
survive a load/dump round trip so older and newer editors can share specs.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError


class NodeType(str, Enum):
    """Node types understood by the runtime"""

    AGENT = "agent"
    TOOL = "tool"
    SKILL = "skill"
    CONDITION = "condition"
    ROUTER = "router"
    TRIGGER = "trigger"
    WEBHOOK = "webhook"


class CollaborationStrategy(str, Enum):
    """How agents in a workflow cooperate"""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONSENSUS = "consensus"
    HIERARCHICAL = "hierarchical"


# =============================================================================
# Typed node configs
# =============================================================================


class NodeConfig(BaseModel):
    """Base for structured node configs. Extra keys are kept."""

    model_config = ConfigDict(extra="allow")


def _reference_id(v):
    # editors store numeric ids for imported records
    if v is None or isinstance(v, str):
        return v
    return str(v)


class AgentNodeConfig(NodeConfig):
    agent_id: Optional[str] = None
    instructions: Optional[str] = None
    model: Optional[str] = None

    @field_validator("agent_id", mode="before")
    @classmethod
    def coerce_agent_id(cls, v):
        return _reference_id(v)


class SkillNodeConfig(NodeConfig):
    skill_id: Optional[str] = None
    inputs: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("skill_id", mode="before")
    @classmethod
    def coerce_skill_id(cls, v):
        return _reference_id(v)


class ToolNodeConfig(NodeConfig):
    tool_id: Optional[str] = None
    operation: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("tool_id", mode="before")
    @classmethod
    def coerce_tool_id(cls, v):
        return _reference_id(v)


class ConditionNodeConfig(NodeConfig):
    expression: Optional[str] = None


class RouterNodeConfig(NodeConfig):
    routes: List[Dict[str, Any]] = Field(default_factory=list)
    default_route: Optional[str] = None


class TriggerNodeConfig(NodeConfig):
    event: Optional[str] = None
    schedule: Optional[str] = None


class WebhookNodeConfig(NodeConfig):
    url: Optional[str] = None
    method: Optional[str] = "POST"


class GenericNodeConfig(NodeConfig):
    """Fallback for node types this version does not know"""


NODE_CONFIG_TYPES: Dict[str, Type[NodeConfig]] = {
    NodeType.AGENT.value: AgentNodeConfig,
    NodeType.SKILL.value: SkillNodeConfig,
    NodeType.TOOL.value: ToolNodeConfig,
    NodeType.CONDITION.value: ConditionNodeConfig,
    NodeType.ROUTER.value: RouterNodeConfig,
    NodeType.TRIGGER.value: TriggerNodeConfig,
    NodeType.WEBHOOK.value: WebhookNodeConfig,
}


# =============================================================================
# Graph elements
# =============================================================================


class Position(BaseModel):
    """Canvas position of a node"""

    x: float = 0
    y: float = 0


class Node(BaseModel):
    """A single node of the workflow graph.

    ``config`` is stored as an open map; ``typed_config()`` reads it through
    the structured model registered for ``type``.
    """

    model_config = ConfigDict(extra="allow")

    id: str = ""
    type: str = ""
    label: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Position] = None

    @field_validator("id", "type", "label", mode="before")
    @classmethod
    def coerce_text(cls, v):
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)

    @field_validator("config", mode="before")
    @classmethod
    def coerce_config(cls, v):
        return {} if v is None else v

    def typed_config(self) -> NodeConfig:
        config_cls = NODE_CONFIG_TYPES.get(self.type, GenericNodeConfig)
        return config_cls.model_validate(self.config)

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        if data.get("position") is None:
            data.pop("position", None)
        return data

    @classmethod
    def from_dict(cls, data: Union["Node", Dict[str, Any]]) -> "Node":
        if isinstance(data, Node):
            return data.model_copy(deep=True)
        return cls.model_validate(data)


class Edge(BaseModel):
    """Directed edge between two node ids (wire keys ``from``/``to``)"""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    source: str = Field(alias="from")
    target: str = Field(alias="to")
    label: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        """Identity used by diff and merge; the label is not part of it"""
        return (self.source, self.target)

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        if data.get("label") is None:
            data.pop("label", None)
        return data


class WorkflowSpec(BaseModel):
    """Node/edge specification of a workflow"""

    model_config = ConfigDict(extra="allow")

    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    collaboration_strategy: Optional[CollaborationStrategy] = None

    @field_validator("nodes", "edges", mode="before")
    @classmethod
    def coerce_list(cls, v):
        return [] if v is None else v

    @classmethod
    def from_dict(cls, data: Union["WorkflowSpec", Dict[str, Any], None]) -> "WorkflowSpec":
        if isinstance(data, WorkflowSpec):
            return data.model_copy(deep=True)
        return cls.model_validate(data or {})

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True, exclude={"nodes", "edges"})
        if data.get("collaboration_strategy") is None:
            data.pop("collaboration_strategy", None)
        data["nodes"] = [node.to_dict() for node in self.nodes]
        data["edges"] = [edge.to_dict() for edge in self.edges]
        return data

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def get_node(self, node_id: str) -> Optional[Node]:
        """Find the first node with ``node_id``."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def edge_keys(self) -> Set[Tuple[str, str]]:
        return {edge.key for edge in self.edges}

    def dangling_edges(self) -> List[Edge]:
        """Edges whose endpoints name no node. Tolerated, never rejected."""
        ids = set(self.node_ids)
        return [e for e in self.edges if e.source not in ids or e.target not in ids]

    def nodes_of_type(self, node_type: Union[NodeType, str]) -> List[Node]:
        value = node_type.value if isinstance(node_type, NodeType) else node_type
        return [node for node in self.nodes if node.type == value]


def load_spec(data: Union[WorkflowSpec, Dict[str, Any], None]) -> WorkflowSpec:
    """
    Parse untrusted spec input.

    Raises:
        ValidationError: If the document does not have the spec shape
    """
    try:
        return WorkflowSpec.from_dict(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid workflow spec",
            field="spec",
            errors=[
                {"loc": [str(p) for p in err["loc"]], "msg": err["msg"]}
                for err in e.errors()
            ],
        )
