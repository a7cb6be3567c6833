# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Archon - workflow versioning and CI pipeline core

Spec model, cycle detection, diff/merge of workflow versions, branch
management, rollback and the lint/test/build/deploy pipeline.
"""

__version__ = "1.0.0"
