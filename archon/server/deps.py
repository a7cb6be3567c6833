# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""FastAPI dependencies resolving app-scoped services"""

import uuid

from fastapi import Request

from ..core.pipeline import PipelineRunner
from ..core.versioning import VersionManager


def get_version_manager(request: Request) -> VersionManager:
    return request.app.state.versions


def get_pipeline_runner(request: Request) -> PipelineRunner:
    return request.app.state.pipelines


def trace_id_of(request: Request) -> str:
    """Trace id of the current request, created on first use"""
    trace_id = getattr(request.state, "trace_id", None)
    if not trace_id:
        trace_id = str(uuid.uuid4())
        request.state.trace_id = trace_id
    return trace_id
