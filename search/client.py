"""
Async client for the search endpoint, plus a debouncer for interactive use.

    client = SearchClient("http://localhost:8000", token=token)
    debounced = DebouncedSearch(client.search)
    response = await debounced.submit("rep")   # None if a newer query superseded it
"""

import asyncio
from typing import Awaitable, Callable, Optional

import httpx
from loguru import logger

from core.errors import PortalError, UpstreamError, ValidationError
from search.aggregator import MIN_QUERY_LENGTH
from search.schemas import SearchResponse

DEFAULT_DEBOUNCE_SECONDS = 0.3

SearchFn = Callable[[str, str], Awaitable[SearchResponse]]


class SearchClient:
    """Thin httpx wrapper around GET /search"""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def search(self, query: str, scope: str = "all") -> SearchResponse:
        try:
            response = await self._client.get("/search", params={"q": query, "type": scope})
        except httpx.HTTPError as exc:
            logger.error(f"[SEARCH_CLIENT] Request failed: {exc}")
            raise UpstreamError("Search failed", cause=exc)

        if response.status_code == 400:
            raise ValidationError(response.json().get("error", "Invalid search request"), field="q")

        if response.status_code != 200:
            logger.warning(f"[SEARCH_CLIENT] Search returned {response.status_code}")
            raise UpstreamError(response.json().get("error", "Search failed"))

        return SearchResponse.model_validate(response.json())

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()


class DebouncedSearch:
    """
    Last-query-wins debouncer.

    Every `submit` restarts the debounce timer. A search only runs once the
    timer expires, and its result is published only if no newer query was
    submitted in the meantime. Superseded calls return None; a failure of the
    current query is raised to the caller.
    """

    def __init__(self, search_fn: SearchFn, delay: float = DEFAULT_DEBOUNCE_SECONDS):
        self._search_fn = search_fn
        self.delay = delay
        self._generation = 0
        self._timer: Optional[asyncio.Task] = None
        self.latest: Optional[SearchResponse] = None

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def submit(self, query: str, scope: str = "all") -> Optional[SearchResponse]:
        self._generation += 1
        generation = self._generation

        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
            self._timer = None

        if len((query or "").strip()) < MIN_QUERY_LENGTH:
            # too short to search: clear
            self.latest = SearchResponse(query=(query or "").strip().lower(), results=[], total=0)
            return self.latest

        self._timer = asyncio.ensure_future(asyncio.sleep(self.delay))
        try:
            await self._timer
        except asyncio.CancelledError:
            if self._is_current(generation):
                raise
            return None

        try:
            response = await self._search_fn(query, scope)
        except PortalError as e:
            if self._is_current(generation):
                raise
            logger.debug(f"[SEARCH_CLIENT] Ignoring failure of superseded search '{query}': {e.message}")
            return None

        if not self._is_current(generation):
            logger.debug(f"[SEARCH_CLIENT] Discarding stale results for '{query}'")
            return None

        self.latest = response
        return response
