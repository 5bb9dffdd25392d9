"""Web search tools — DuckDuckGo (default), Brave, or SearXNG.

Every backend produces a staged stream: a ``Searching...`` notice, then
either a ``Found N results`` notice followed by the formatted results, or
a failure carrying the backend's :class:`ProviderError`.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    ValidationError,
)

from toolmux.core.errors import (
    ConfigError,
    InvalidParametersError,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    UnsupportedProviderError,
)
from toolmux.tools.base import Failure, Progress, Result, ToolDescriptor

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from toolmux.config.schema import RemoteProviderConfig
    from toolmux.tools.base import ToolEvent

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 10
QUERY_MAX_LENGTH = 128
TRACKING_PARAMS: frozenset[str] = frozenset({"ss_mkt"})

SEARCH_PARAMETERS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "query": {
            "type": "string",
            "description": "Search query",
            "minLength": 1,
            "maxLength": QUERY_MAX_LENGTH,
        },
        "max_results": {
            "type": "integer",
            "description": "Maximum number of results (optional).",
            "minimum": 1,
            "maximum": 100,
        },
    },
    "required": ["query"],
    "additionalProperties": False,
}


class SearchParameters(BaseModel):
    """Validated arguments shared by every search tool."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    query: StrictStr = Field(min_length=1, max_length=QUERY_MAX_LENGTH)
    max_results: Annotated[StrictInt, Field(ge=1, le=100)] | None = Field(
        default=None,
        validation_alias=AliasChoices("max_results", "maxResults"),
    )


def parse_search_parameters(
    tool_name: str,
    arguments: dict[str, Any],
) -> SearchParameters:
    """Validate raw tool arguments.

    Raises:
        InvalidParametersError: If ``query`` or ``max_results`` is out of bounds.
    """
    try:
        return SearchParameters.model_validate(arguments)
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise InvalidParametersError(tool_name, errors) from exc


@dataclass(frozen=True, slots=True)
class SearchResultItem:
    """A single search hit."""

    title: str
    description: str
    url: str


def strip_tracking_params(raw_url: str) -> str:
    """Remove tracking query parameters (``ss_mkt``) from a URL."""
    parts = urlsplit(raw_url)
    if not parts.query:
        return raw_url
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in TRACKING_PARAMS
    ]
    return urlunsplit(parts._replace(query=urlencode(query)))


def format_results(results: list[SearchResultItem]) -> str:
    """Format search results as a tagged text block for the model."""
    entries = "".join(
        "<search-result>\n"
        f"<title>{r.title}</title>\n"
        f"<description>{r.description}</description>\n"
        f"<url>{r.url}</url>\n"
        "</search-result>"
        for r in results
    )
    return f"Here are the results: <search-results>{entries}</search-results>"


# ── Backends ─────────────────────────────────────────────────────


class SearchBackend:
    """Base class for search backends.

    Subclasses implement :meth:`search`. The default :meth:`tools` exposes
    a single ``search_web`` tool; backends with their own adapter override it.
    """

    name: str = ""
    description: str = ""
    tool_name: str = "search_web"

    def __init__(self, provider: str | None = None) -> None:
        self.provider = provider or self.name

    async def search(
        self,
        query: str,
        max_results: int | None = None,
    ) -> list[SearchResultItem]:
        raise NotImplementedError

    def tools(self) -> dict[str, ToolDescriptor]:
        tool = search_tool(self, self.tool_name, self.description)
        return {tool.name: tool}


def search_tool(
    backend: SearchBackend,
    tool_name: str,
    description: str,
) -> ToolDescriptor:
    """Wrap a backend's :meth:`SearchBackend.search` as a staged tool."""

    async def run(arguments: dict[str, Any]) -> AsyncIterator[ToolEvent]:
        params = SearchParameters.model_validate(arguments)
        yield Progress("Searching...")
        try:
            results = await backend.search(params.query, params.max_results)
        except ProviderError as exc:
            logger.warning(
                "Search via %s failed: %s",
                backend.provider,
                exc.reason,
                extra={"event": "search_failed", "provider": backend.provider},
            )
            yield Failure(exc)
            return
        yield Progress(f"Found {len(results)} results")
        yield Result(format_results(results))

    def validate(arguments: dict[str, Any]) -> dict[str, Any]:
        params = parse_search_parameters(tool_name, arguments)
        return params.model_dump()

    return ToolDescriptor(
        name=tool_name,
        description=description,
        parameters_schema=SEARCH_PARAMETERS_SCHEMA,
        provider=backend.provider,
        invoke=run,
        validator=validate,
    )


class DuckDuckGoSearch(SearchBackend):
    """DuckDuckGo search with strict safe-search.

    ``duckduckgo_search`` is synchronous, so queries run in the default
    executor.
    """

    name = "duckduckgo"
    description = "Searches the web using DuckDuckGo for a given query."

    def __init__(
        self,
        provider: str | None = None,
        *,
        timeout: float = 15.0,
    ) -> None:
        super().__init__(provider)
        self._timeout = timeout

    async def search(
        self,
        query: str,
        max_results: int | None = None,
    ) -> list[SearchResultItem]:
        limit = max_results or DEFAULT_MAX_RESULTS
        loop = asyncio.get_running_loop()
        try:
            raw = await asyncio.wait_for(
                loop.run_in_executor(None, self._ddg_sync_search, query, limit),
                timeout=self._timeout,
            )
        except TimeoutError:
            msg = f"Search timed out after {self._timeout:g}s"
            raise ProviderTimeoutError(self.provider, msg) from None
        except Exception as exc:
            raise ProviderError(self.provider, f"Search failed: {exc}") from exc

        return [
            SearchResultItem(
                title=r.get("title", ""),
                description=r.get("body", ""),
                url=strip_tracking_params(r.get("href", "")),
            )
            for r in raw[:limit]
        ]

    def _ddg_sync_search(self, query: str, limit: int) -> list[dict[str, str]]:
        """Synchronous DuckDuckGo search (run in executor)."""
        from duckduckgo_search import DDGS

        with DDGS() as ddgs:
            return list(ddgs.text(query, safesearch="on", max_results=limit))


async def _get_json(
    provider: str,
    client: httpx.AsyncClient,
    url: str,
    *,
    params: dict[str, Any],
    headers: dict[str, str] | None = None,
) -> dict[str, Any]:
    """GET a JSON document, mapping HTTP failures onto provider errors."""
    try:
        resp = await client.get(url, params=params, headers=headers)
    except httpx.TimeoutException as exc:
        raise ProviderTimeoutError(provider, f"Request timed out: {exc}") from exc
    except httpx.HTTPError as exc:
        raise ProviderError(provider, f"Request failed: {exc}") from exc

    if resp.status_code in (401, 403):
        msg = f"Rejected credentials (HTTP {resp.status_code})"
        raise ProviderAuthError(provider, msg)
    if resp.status_code == 429:
        retry_after = resp.headers.get("retry-after", "")
        raise ProviderRateLimitError(
            provider,
            retry_after=float(retry_after) if retry_after.isdigit() else None,
        )
    if resp.status_code >= 400:
        raise ProviderError(provider, f"HTTP {resp.status_code}: {resp.text[:200]}")

    try:
        data = resp.json()
    except ValueError as exc:
        raise ProviderError(provider, "Response was not valid JSON") from exc
    if not isinstance(data, dict):
        raise ProviderError(provider, "Unexpected response shape")
    return data


class BraveSearch(SearchBackend):
    """Brave Search API client.

    At most :attr:`MAX_COUNT` results per request; pass ``offset`` to page.
    """

    name = "brave"
    description = (
        "Performs a web search using the Brave Search API, ideal for general "
        "queries, news, articles, and online content. Use this for broad "
        "information gathering, recent events, or when you need diverse web "
        "sources. Maximum 20 results per request, with offset for pagination."
    )
    API_URL = "https://api.search.brave.com/res/v1/web/search"
    MAX_COUNT = 20

    def __init__(
        self,
        provider: str | None = None,
        *,
        api_key: str | None,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(provider)
        if not api_key:
            msg = (
                "Brave Search API key is required. Set BRAVE_SEARCH_API_KEY "
                "or api_key in the provider config."
            )
            raise ConfigError(msg)
        self._api_key = api_key
        self._timeout = timeout
        self._http_client = http_client

    async def search(
        self,
        query: str,
        max_results: int | None = None,
        *,
        offset: int = 0,
    ) -> list[SearchResultItem]:
        count = min(max_results or DEFAULT_MAX_RESULTS, self.MAX_COUNT)
        params: dict[str, Any] = {"q": query, "count": count}
        if offset:
            params["offset"] = offset
        headers = {
            "Accept": "application/json",
            "X-Subscription-Token": self._api_key,
        }
        if self._http_client is not None:
            data = await self._fetch(self._http_client, params, headers)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                data = await self._fetch(client, params, headers)

        web = data.get("web") or {}
        return [
            SearchResultItem(
                title=r.get("title", ""),
                description=r.get("description", ""),
                url=r.get("url", ""),
            )
            for r in (web.get("results") or [])[:count]
            if isinstance(r, dict)
        ]

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        params: dict[str, Any],
        headers: dict[str, str],
    ) -> dict[str, Any]:
        return await _get_json(
            self.provider, client, self.API_URL, params=params, headers=headers
        )


class SearxngClient(SearchBackend):
    """Client for a self-hosted SearXNG instance.

    Its tool adapter publishes a ``searxng`` tool rather than the generic
    ``search_web`` one.
    """

    name = "searxng"
    description = (
        "Searches across multiple search engines using a local SearXNG "
        "instance. Useful for general web search, news, and documentation."
    )
    tool_name = "searxng"

    def __init__(
        self,
        provider: str | None = None,
        *,
        base_url: str | None,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(provider)
        if not base_url:
            msg = (
                "SearXNG base URL is required. Set SEARXNG_API_BASE_URL "
                "or base_url in the provider config."
            )
            raise ConfigError(msg)
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http_client = http_client

    async def search(
        self,
        query: str,
        max_results: int | None = None,
    ) -> list[SearchResultItem]:
        url = f"{self._base_url}/search"
        params = {"q": query, "format": "json", "safesearch": 2}
        if self._http_client is not None:
            data = await _get_json(
                self.provider, self._http_client, url, params=params
            )
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                data = await _get_json(self.provider, client, url, params=params)

        limit = max_results or DEFAULT_MAX_RESULTS
        return [
            SearchResultItem(
                title=r.get("title", ""),
                description=r.get("content", ""),
                url=r.get("url", ""),
            )
            for r in (data.get("results") or [])[:limit]
            if isinstance(r, dict)
        ]


# ── Backend selection ────────────────────────────────────────────

BackendFactory = Callable[["RemoteProviderConfig | None"], "SearchBackend"]


def _duckduckgo(config: RemoteProviderConfig | None) -> SearchBackend:
    if config is None:
        return DuckDuckGoSearch()
    return DuckDuckGoSearch(config.name, timeout=config.timeout)


def _brave(config: RemoteProviderConfig | None) -> SearchBackend:
    if config is None:
        return BraveSearch(api_key=os.environ.get("BRAVE_SEARCH_API_KEY"))
    return BraveSearch(config.name, api_key=config.api_key, timeout=config.timeout)


def _searxng(config: RemoteProviderConfig | None) -> SearchBackend:
    if config is None:
        return SearxngClient(base_url=os.environ.get("SEARXNG_API_BASE_URL"))
    return SearxngClient(
        config.name, base_url=config.base_url, timeout=config.timeout
    )


SEARCH_BACKENDS: Mapping[str, BackendFactory] = {
    "duckduckgo": _duckduckgo,
    "brave": _brave,
    "searxng": _searxng,
}


def web_search_tools(
    provider: str | None = None,
    *,
    config: RemoteProviderConfig | None = None,
    backends: Mapping[str, BackendFactory] | None = None,
) -> dict[str, ToolDescriptor]:
    """Build the web search tool set for one backend.

    Args:
        provider: Backend name; defaults to ``config.backend`` or ``duckduckgo``.
        config: Remote provider config (name, credentials, timeout).
        backends: Backend factories by name; defaults to :data:`SEARCH_BACKENDS`.

    Raises:
        UnsupportedProviderError: Unknown backend (before any I/O).
        ConfigError: Backend is missing required settings.
    """
    table = SEARCH_BACKENDS if backends is None else backends
    name = provider or (config.backend if config is not None else "duckduckgo")
    factory = table.get(name)
    if factory is None:
        raise UnsupportedProviderError(name)
    return factory(config).tools()
