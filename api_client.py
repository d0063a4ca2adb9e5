"""
Thin async JSON client for the agent API.
Shared by the HTTP gateway, the sandbox backend and the session store.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

TokenGetter = Callable[[], Awaitable[Optional[str]]]


class ApiError(Exception):
    """HTTP or network failure talking to the agent API"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def static_token(token: Optional[str]) -> TokenGetter:
    """Token getter that always returns the same bearer token."""
    async def _get() -> Optional[str]:
        return token or None
    return _get


class ApiClient:
    """
    JSON-over-HTTP client with a bearer token fetched fresh for every request.

    GET requests carry ``body`` as query parameters (None values dropped);
    every other method sends it as a JSON body.
    """

    def __init__(
        self,
        base_url: str,
        token_getter: Optional[TokenGetter] = None,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_getter = token_getter
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token_getter:
            try:
                token = await self.token_getter()
            except Exception as e:
                logger.error(f"Token getter failed: {e}")
                token = None
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    async def request(self, method: str, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{endpoint}"
        kwargs: Dict[str, Any] = {"headers": await self._headers()}
        if method == "GET":
            if body:
                kwargs["params"] = {k: v for k, v in body.items() if v is not None}
        elif body is not None:
            kwargs["json"] = body

        logger.debug(f"{method} {url}")
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {url} failed: {e}")
            raise ApiError(f"Request to {endpoint} failed: {e}") from e

        if response.is_error:
            message = f"HTTP {response.status_code}"
            try:
                payload = response.json()
                if isinstance(payload, dict) and payload.get("message"):
                    message = str(payload["message"])
            except ValueError:
                if response.text:
                    message = f"HTTP {response.status_code}: {response.text}"
            logger.error(f"{method} {url} -> {response.status_code}: {message}")
            raise ApiError(message, status=response.status_code)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"Invalid JSON from {endpoint}: {e}", status=response.status_code) from e

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", endpoint, params)

    async def post(self, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("POST", endpoint, body or {})

    async def delete(self, endpoint: str) -> Any:
        return await self.request("DELETE", endpoint, {})

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
