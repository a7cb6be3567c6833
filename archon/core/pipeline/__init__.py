# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""CI pipeline: lint -> test -> build -> deploy"""

from .models import (
    DEFAULT_STAGES,
    PipelineRun,
    PipelineStage,
    PipelineStatus,
    StageResult,
    StageStatus,
    StageType,
)
from .runner import PipelineRunner, parse_stages
from .stages import (
    StageContext,
    StageExecutor,
    build_artifacts,
    canonical_json,
    default_executors,
    lint_spec,
    render_deploy_url,
)

__all__ = [
    "DEFAULT_STAGES",
    "PipelineRun",
    "PipelineStage",
    "PipelineStatus",
    "StageResult",
    "StageStatus",
    "StageType",
    "PipelineRunner",
    "parse_stages",
    "StageContext",
    "StageExecutor",
    "build_artifacts",
    "canonical_json",
    "default_executors",
    "lint_spec",
    "render_deploy_url",
]
