# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Handler routes, mounted under /functions"""

from fastapi import APIRouter

from . import branches, pipelines, versions, workflows

api_router = APIRouter()

api_router.include_router(workflows.router, tags=["workflows"])
api_router.include_router(versions.router, tags=["versions"])
api_router.include_router(branches.router, tags=["branches"])
api_router.include_router(pipelines.router, tags=["pipelines"])

__all__ = ["api_router"]
