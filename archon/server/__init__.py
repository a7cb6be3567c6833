# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Archon HTTP server (FastAPI)"""

from .app import create_app

__all__ = ["create_app"]
