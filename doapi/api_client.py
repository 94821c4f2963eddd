"""
doapi/api_client.py

Responsibility: Sends authenticated requests to the DigitalOcean REST API (v2).
All DigitalOcean HTTP calls are concentrated here. Handles Bearer auth, the
user agent, client-side rate limiting, 429 Retry-After back-off and retries
of server errors.
Does NOT: interpret resource payloads, poll actions, or walk pagination.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from doapi.types import Action, ApiResponse, ListOptions, PageLinks
from exceptions import ApiError, TransportError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUSES = frozenset({500, 502, 503, 504})


class DigitalOceanClient:
    """
    Thin async client for the DigitalOcean REST API.

    All outbound requests go through the injected httpx.AsyncClient, so the
    class is fully testable with respx.mock. Safe for concurrent use by
    several resource operations on the same event loop.

    Collaborators:
        - httpx.AsyncClient: injected HTTP client; must be kept alive externally
        - services.pagination: walks list_page() to completion
        - services.action_waiter: polls get_action()
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token: str,
        *,
        base_url: str = "https://api.digitalocean.com",
        user_agent: str = "digitalocean-provider",
        requests_per_second: float = 0.0,
        retry_max: int = 4,
        retry_wait_min: float = 1.0,
        retry_wait_max: float = 30.0,
    ) -> None:
        """
        Initialises the client.

        Args:
            http_client: A long-lived httpx.AsyncClient instance.
            token: DigitalOcean personal access token (Bearer credential).
            base_url: API root, without the /v2 suffix.
            user_agent: Value sent in the User-Agent header.
            requests_per_second: Client-side rate limit; 0 disables it.
            retry_max: Maximum retries for 429, 5xx and transport failures.
            retry_wait_min: Lower bound of the back-off between retries, in seconds.
            retry_wait_max: Upper bound of the back-off and of any Retry-After, in seconds.
        """
        self._client = http_client
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": user_agent,
        }
        self._min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._retry_max = retry_max
        self._retry_wait_min = retry_wait_min
        self._retry_wait_max = retry_wait_max
        self._rate_lock = asyncio.Lock()
        self._last_request = 0.0

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def user_agent(self) -> str:
        return self._headers["User-Agent"]

    # ---------------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------------

    async def get(self, path: str, *, params: dict[str, Any] | None = None) -> tuple[dict[str, Any], ApiResponse]:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Any = None) -> tuple[dict[str, Any], ApiResponse]:
        return await self.request("POST", path, json=body)

    async def put(self, path: str, body: Any = None) -> tuple[dict[str, Any], ApiResponse]:
        return await self.request("PUT", path, json=body)

    async def patch(self, path: str, body: Any = None) -> tuple[dict[str, Any], ApiResponse]:
        return await self.request("PATCH", path, json=body)

    async def delete(self, path: str, body: Any = None) -> tuple[dict[str, Any], ApiResponse]:
        return await self.request("DELETE", path, json=body)

    async def list_page(
        self,
        path: str,
        key: str,
        opts: ListOptions,
        *,
        params: dict[str, Any] | None = None,
    ) -> tuple[list[dict[str, Any]], ApiResponse]:
        """
        Fetches one page of a listing endpoint.

        Args:
            path: Listing path, e.g. "/v2/droplets".
            key: Top-level key holding the records, e.g. "droplets".
            opts: Page number and page size.
            params: Extra query parameters (tag filters, resource types).

        Returns:
            The records on this page and the response metadata.

        Raises:
            ApiError: If the API returns a non-2xx status.
            TransportError: If the request could not be sent.
        """
        query = dict(params or {})
        query.update(opts.as_params())
        body, resp = await self.get(path, params=query)
        return list(body.get(key) or []), resp

    async def get_action(self, action_id: int) -> Action:
        """
        Fetches an action record by ID.

        Raises:
            ApiError: If the API returns a non-2xx status (404 while the
                action is not yet visible).
        """
        body, _ = await self.get(f"/v2/actions/{action_id}")
        return Action.from_dict(body["action"])

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> tuple[dict[str, Any], ApiResponse]:
        """
        Sends an authenticated request, retrying rate-limited and server errors.

        Args:
            method: HTTP verb.
            path: Path below the base URL, starting with "/v2".
            params: Optional query-string parameters.
            json: Optional JSON request body.

        Returns:
            The decoded JSON body ({} for empty bodies) and the response metadata.

        Raises:
            ApiError: For any non-2xx answer once retries are exhausted.
            TransportError: If no HTTP response could be obtained.
        """
        url = f"{self._base_url}{path}"
        attempt = 0
        while True:
            try:
                return await self._send(method, url, params=params, json=json)
            except ApiError as exc:
                if attempt >= self._retry_max:
                    raise
                if exc.status_code == 429:
                    wait = self._retry_after_wait(exc.retry_after)
                    logger.warning("Rate limited on %s %s, retrying in %.1fs", method, url, wait)
                elif exc.status_code in _RETRYABLE_STATUSES:
                    wait = self._backoff(attempt)
                    logger.debug("Server error %s on %s %s, retrying in %.1fs", exc.status_code, method, url, wait)
                else:
                    raise
            except TransportError:
                if attempt >= self._retry_max:
                    raise
                wait = self._backoff(attempt)
                logger.debug("Transport error on %s %s, retrying in %.1fs", method, url, wait)
            attempt += 1
            await asyncio.sleep(wait)

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None,
        json: Any,
    ) -> tuple[dict[str, Any], ApiResponse]:
        await self._throttle()
        logger.debug("%s %s params=%s", method, url, params)
        try:
            response = await self._client.request(
                method, url, headers=self._headers, params=params, json=json
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise self._api_error(method, url, exc.response) from exc
        except httpx.RequestError as exc:
            raise TransportError(
                f"Network error calling DigitalOcean API ({method} {url}): {exc}"
            ) from exc

        logger.debug("%s %s -> %s", method, url, response.status_code)
        # NOTE: 204 No Content (deletes, some action posts) has an empty body.
        body: dict[str, Any] = response.json() if response.content else {}
        meta = ApiResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            links=PageLinks.from_dict(body.get("links")),
            meta=body.get("meta") or {},
        )
        return body, meta

    async def _throttle(self) -> None:
        if not self._min_interval:
            return
        async with self._rate_lock:
            now = time.monotonic()
            wait = self._last_request + self._min_interval - now
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request = time.monotonic()

    def _backoff(self, attempt: int) -> float:
        return min(self._retry_wait_min * (2 ** attempt), self._retry_wait_max)

    def _retry_after_wait(self, retry_after: float | None) -> float:
        if retry_after is None:
            return self._retry_wait_min
        return min(max(retry_after, 0.0), self._retry_wait_max)

    @staticmethod
    def _api_error(method: str, url: str, response: httpx.Response) -> ApiError:
        """
        Builds an ApiError from the upstream error envelope.

        The envelope is {"id": "not_found", "message": "...", "request_id": "..."};
        non-JSON bodies fall back to the raw text.
        """
        message = response.text
        error_id = ""
        request_id = response.headers.get("x-request-id", "")
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            message = payload.get("message", message)
            error_id = payload.get("id", "")
            request_id = payload.get("request_id", request_id)

        retry_after: float | None = None
        header = response.headers.get("Retry-After")
        if header:
            try:
                retry_after = float(header)
            except ValueError:
                retry_after = None

        return ApiError(
            response.status_code,
            message,
            method=method,
            url=url,
            request_id=request_id,
            error_id=error_id,
            retry_after=retry_after,
        )
