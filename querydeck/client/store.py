"""
HTTP client for the query definition store and execution engine.

Every non-2xx response and every transport failure surfaces as `StoreError`,
carrying the server's `{"error": ...}` message when there is one.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from querydeck.core.config import settings

logger = logging.getLogger(__name__)

QUERIES_PATH = "/custom-queries"


class StoreError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return f"HTTP {response.status_code}"


def _unwrap_query(body: Any) -> Dict[str, Any]:
    # Accept both {"query": {...}} and a bare record
    if isinstance(body, dict) and isinstance(body.get("query"), dict):
        return body["query"]
    return body


class StoreClient:
    """
    Thin async wrapper over the `/custom-queries` API.

    Pass an existing `httpx.AsyncClient` to share a connection pool or to
    point the client at an in-process ASGI app; otherwise one is created from
    `STORE_BASE_URL` and closed by `aclose()`.
    """

    def __init__(
        self,
        http: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=base_url or settings.STORE_BASE_URL,
            timeout=timeout or settings.STORE_TIMEOUT_SECONDS,
        )

    async def __aenter__(self) -> "StoreClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning(f"{method} {path} failed: {exc}")
            raise StoreError(f"Request failed: {exc}") from exc

        if response.is_error:
            raise StoreError(_error_message(response), response.status_code)

        try:
            return response.json()
        except ValueError:
            return {}

    async def list_queries(self) -> List[Dict[str, Any]]:
        body = await self._request("GET", QUERIES_PATH)
        return body.get("queries", []) if isinstance(body, dict) else []

    async def get_query(self, query_id: str) -> Dict[str, Any]:
        return _unwrap_query(await self._request("GET", f"{QUERIES_PATH}/{query_id}"))

    async def create_query(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return _unwrap_query(await self._request("POST", QUERIES_PATH, json=payload))

    async def update_query(self, query_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return _unwrap_query(
            await self._request("PUT", f"{QUERIES_PATH}/{query_id}", json=payload)
        )

    async def patch_query(self, query_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", f"{QUERIES_PATH}/{query_id}", json=fields)

    async def delete_query(self, query_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"{QUERIES_PATH}/{query_id}")

    async def test_query(self, query_id: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"{QUERIES_PATH}/{query_id}/test",
            json={"parameters": parameters},
        )

    async def query_logs(self, query_id: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        body = await self._request(
            "GET",
            f"{QUERIES_PATH}/{query_id}/logs",
            params={"limit": limit, "offset": offset},
        )
        return body.get("logs", []) if isinstance(body, dict) else []
