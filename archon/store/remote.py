# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Entity store client for a hosted entity API.

Routes:
    POST   /entities/{entity}             create
    GET    /entities/{entity}/{id}        get
    GET    /entities/{entity}?q=&sort=&limit=   filter
    PATCH  /entities/{entity}/{id}        update ({"changes", "expected"})
    DELETE /entities/{entity}/{id}        delete

Transport failures, 429 and 5xx answers are retried with backoff for GET
and DELETE only. POST and PATCH are sent once, because the server may have
applied a write whose answer was lost. 409/412 map to ConcurrentUpdateError.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..core.exceptions import (
    ConcurrentUpdateError,
    NotFoundError,
    StoreError,
    StoreUnavailableError,
)
from ..core.retry import RetryPolicy
from .base import EntityName, EntityStore, entity_name

logger = logging.getLogger("archon.store.remote")

RETRYABLE_METHODS = ("GET", "DELETE")


class RemoteEntityStore(EntityStore):
    """httpx client for the hosted entity API"""

    name = "remote"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.base_url = base_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy()
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        async def send() -> httpx.Response:
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.TransportError as e:
                raise StoreUnavailableError(
                    f"Entity API unreachable: {method} {path}", cause=e
                )
            if response.status_code == 429 or response.status_code >= 500:
                raise StoreUnavailableError(
                    f"Entity API returned {response.status_code} for {method} {path}",
                    details={"status_code": response.status_code},
                )
            return response

        if method not in RETRYABLE_METHODS:
            return await send()
        return await self.retry_policy.run(send, description=f"{method} {path}")

    @staticmethod
    def _raise_for_status(response: httpx.Response):
        if response.is_success:
            return
        raise StoreError(
            f"Entity API returned {response.status_code}",
            details={"status_code": response.status_code, "body": response.text[:500]},
        )

    async def create(self, entity: EntityName, data: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request("POST", f"/entities/{entity_name(entity)}", json=data)
        self._raise_for_status(response)
        return response.json()

    async def get(self, entity: EntityName, entity_id: str) -> Optional[Dict[str, Any]]:
        response = await self._request("GET", f"/entities/{entity_name(entity)}/{entity_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return response.json()

    async def filter(
        self,
        entity: EntityName,
        query: Optional[Dict[str, Any]] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if query:
            params["q"] = json.dumps(query)
        if sort:
            params["sort"] = sort
        if limit is not None:
            params["limit"] = limit

        response = await self._request("GET", f"/entities/{entity_name(entity)}", params=params)
        self._raise_for_status(response)
        return response.json()

    async def update(
        self,
        entity: EntityName,
        entity_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        name = entity_name(entity)
        body: Dict[str, Any] = {"changes": changes}
        if expected:
            body["expected"] = expected

        response = await self._request("PATCH", f"/entities/{name}/{entity_id}", json=body)
        if response.status_code == 404:
            raise NotFoundError(f"{name} not found", entity=name, entity_id=entity_id)
        if response.status_code in (409, 412):
            raise ConcurrentUpdateError(
                f"{name} {entity_id} was modified concurrently",
                entity=name,
                entity_id=entity_id,
                expected=expected,
            )
        self._raise_for_status(response)
        return response.json()

    async def delete(self, entity: EntityName, entity_id: str) -> bool:
        response = await self._request("DELETE", f"/entities/{entity_name(entity)}/{entity_id}")
        if response.status_code == 404:
            return False
        self._raise_for_status(response)
        return True

    async def close(self):
        await self._client.aclose()
