# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Caller identity for Archon handlers.

Authentication happens at the gateway, which forwards the caller as
``X-Archon-User`` and ``X-Archon-Role`` headers.
"""

from typing import Any, Dict

from fastapi import Request

from ..core.exceptions import UnauthorizedError

USER_HEADER = "X-Archon-User"
ROLE_HEADER = "X-Archon-Role"


async def get_current_user(request: Request) -> Dict[str, Any]:
    """Get current user from gateway headers (if auth enabled)"""
    settings = request.app.state.config.server
    email = request.headers.get(USER_HEADER)
    role = request.headers.get(ROLE_HEADER)

    if not settings.auth_enabled:
        # Auth disabled - allow all requests
        return {"id": email or "anonymous", "email": email, "role": role or "admin"}

    if not email:
        raise UnauthorizedError("Unauthorized", hint=f"Missing {USER_HEADER} header")

    return {"id": email, "email": email, "role": role or "member"}


def actor_of(user: Dict[str, Any]) -> str:
    return user.get("email") or user["id"]
