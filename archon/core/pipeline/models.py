# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Pipeline data models."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class StageType(str, Enum):
    LINT = "lint"
    TEST = "test"
    BUILD = "build"
    DEPLOY = "deploy"


class StageStatus(str, Enum):
    """Stage state machine: pending -> running -> passed|failed|skipped"""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class PipelineStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class PipelineStage(BaseModel):
    """One configured stage of a CI pipeline"""

    name: str
    type: str
    order: int = 0
    config: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("config", mode="before")
    @classmethod
    def coerce_config(cls, v):
        return {} if v is None else v


DEFAULT_STAGES = [
    PipelineStage(name="lint", type=StageType.LINT.value, order=1),
    PipelineStage(name="test", type=StageType.TEST.value, order=2),
    PipelineStage(name="build", type=StageType.BUILD.value, order=3),
    PipelineStage(name="deploy", type=StageType.DEPLOY.value, order=4),
]


class LintIssue(BaseModel):
    severity: IssueSeverity
    message: str
    node_id: Optional[str] = None


class CheckResult(BaseModel):
    """One named check of the test stage"""

    name: str
    status: StageStatus
    duration_ms: int = 0
    error: Optional[str] = None


class BuildArtifacts(BaseModel):
    workflow_json: str
    size_bytes: int
    checksum: str
    built_at: str


class StageResult(BaseModel):
    """Outcome of one stage. Payload fields depend on the stage type."""

    stage: str
    type: str
    status: StageStatus
    duration_ms: int = 0
    summary: str = ""
    error: Optional[str] = None

    # lint
    issues: Optional[List[LintIssue]] = None
    # test
    tests: Optional[List[CheckResult]] = None
    passed: Optional[int] = None
    failed: Optional[int] = None
    total: Optional[int] = None
    # build
    artifacts: Optional[BuildArtifacts] = None
    # deploy
    deployment_id: Optional[str] = None
    environment: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class PipelineRun(BaseModel):
    """Result of one pipeline invocation"""

    status: PipelineStatus
    stages: List[StageResult] = Field(default_factory=list)
    duration_ms: int = 0
    started_at: str
    finished_at: str
    stage_states: Dict[str, StageStatus] = Field(default_factory=dict)

    @property
    def stages_completed(self) -> int:
        return len(self.stages)
