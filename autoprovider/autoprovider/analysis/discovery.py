"""Endpoint discoverer — try likely REST and GraphQL endpoint shapes."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from urllib.parse import quote_plus, urlparse

import httpx

from autoprovider.analysis.matcher import find_entity_lists
from autoprovider.analysis.prober import resolve_hint
from autoprovider.models import MAX_SAMPLE_CHARS, ApiEndpoint, EndpointPurpose, SiteProfile
from autoprovider.provider_config import ApiType
from autoprovider.utils.http import parse_json

logger = logging.getLogger(__name__)

REST_PATHS = (
    "/api/search?q={query}",
    "/api/search?query={query}",
    "/search?q={query}",
    "/api/v1/search?q={query}",
    "/api/anime/search?q={query}",
    "/api/manga/search?q={query}",
    "/api/anime?search={query}",
    "/api/manga?title={query}",
    "/anime/{slug}",
    "/wp-json/wp/v2/posts?search={query}",
)
GRAPHQL_PATHS = ("/graphql", "/api/graphql", "/gql")

_TYPENAME_QUERY = "{ __typename }"

_PURPOSE_TERMS: tuple[tuple[EndpointPurpose, tuple[str, ...]], ...] = (
    (EndpointPurpose.SEARCH, ("search", "query", "find", "title=")),
    (EndpointPurpose.EPISODES, ("episode",)),
    (EndpointPurpose.CHAPTERS, ("chapter",)),
    (EndpointPurpose.STREAMS, ("stream", "source", "watch")),
    (EndpointPurpose.PAGES, ("page", "image")),
    (EndpointPurpose.DETAILS, ("info", "detail", "{slug}")),
)


@dataclass(frozen=True)
class _Candidate:
    order: int
    template: str  # absolute URL, may hold {query} / {slug}
    api_type: ApiType


def infer_purpose(url: str, body: str | None = None) -> EndpointPurpose:
    """Guess what an endpoint is for from its path, then from its body."""
    parsed = urlparse(url)
    target = f"{parsed.path}?{parsed.query}".lower()
    for purpose, terms in _PURPOSE_TERMS:
        if any(t in target for t in terms):
            return purpose
    if body:
        lowered = body[:2000].lower()
        for purpose, terms in _PURPOSE_TERMS[1:]:
            if any(f'"{t}' in lowered for t in terms):
                return purpose
    return EndpointPurpose.UNKNOWN


def slugify_query(query: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", query.lower()).strip("-")


class EndpointDiscoverer:
    """Probe candidate endpoints concurrently with a fixed worker cap."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        max_workers: int = 6,
        timeout: float = 30.0,
    ) -> None:
        self._client = client
        self._max_workers = max(1, max_workers)
        self._timeout = timeout

    async def discover(self, profile: SiteProfile, test_query: str = "naruto") -> list[ApiEndpoint]:
        candidates = self._candidates(profile)
        logger.info("Testing %d candidate endpoint(s) on %s", len(candidates), profile.base_url)

        semaphore = asyncio.Semaphore(self._max_workers)
        accepted: list[tuple[int, ApiEndpoint]] = []

        async def run(candidate: _Candidate) -> None:
            async with semaphore:
                endpoint = await self._try(candidate, profile, test_query)
            if endpoint is not None:
                accepted.append((candidate.order, endpoint))

        tasks = [asyncio.create_task(run(c)) for c in candidates]
        try:
            async with asyncio.timeout(self._timeout):
                outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        except TimeoutError:
            logger.warning(
                "Endpoint discovery timed out after %.0fs; keeping %d result(s)",
                self._timeout, len(accepted),
            )
            for task in tasks:
                task.cancel()
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        for candidate, outcome in zip(candidates, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Candidate %s failed", candidate.template, exc_info=outcome)

        # Merge by confidence, then by declaration order, never by arrival.
        accepted.sort(key=lambda pair: (-pair[1].confidence, pair[0]))
        endpoints = [endpoint for _, endpoint in accepted]
        logger.info("Accepted %d endpoint(s)", len(endpoints))
        return endpoints

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _candidates(self, profile: SiteProfile) -> list[_Candidate]:
        base = profile.base_url
        templates: list[tuple[str, ApiType]] = []

        for endpoint in profile.endpoints:
            if endpoint.api_type == ApiType.GRAPHQL:
                templates.append((endpoint.url, ApiType.GRAPHQL))
        for path in GRAPHQL_PATHS:
            templates.append((base + path, ApiType.GRAPHQL))
        for hint in profile.api_hints:
            url = resolve_hint(base, hint)
            if "graphql" in url.lower() or url.rstrip("/").endswith("/gql"):
                templates.append((url, ApiType.GRAPHQL))
            elif "search" in url.lower() and "?" not in url:
                templates.append((url + "?q={query}", ApiType.REST))
            elif "{" not in url:
                templates.append((url, ApiType.REST))
        for path in REST_PATHS:
            templates.append((base + path, ApiType.REST))

        seen: set[str] = set()
        candidates: list[_Candidate] = []
        for template, api_type in templates:
            key = template.rstrip("/")
            if key in seen or urlparse(template).scheme not in ("http", "https"):
                continue
            seen.add(key)
            candidates.append(_Candidate(order=len(candidates), template=template, api_type=api_type))
        return candidates

    async def _try(self, candidate: _Candidate, profile: SiteProfile, query: str) -> ApiEndpoint | None:
        try:
            if candidate.api_type == ApiType.GRAPHQL:
                return await self._try_graphql(candidate, profile)
            return await self._try_rest(candidate, profile, query)
        except httpx.HTTPError as exc:
            logger.debug("Candidate %s unreachable: %s", candidate.template, exc)
            return None

    async def _try_rest(self, candidate: _Candidate, profile: SiteProfile, query: str) -> ApiEndpoint | None:
        url = candidate.template.replace("{query}", quote_plus(query)).replace("{slug}", slugify_query(query))
        resp = await self._client.get(url, headers=profile.required_headers)
        if resp.status_code != 200:
            return None
        body = resp.text
        data = parse_json(body)
        if data is None:
            return None
        lists = find_entity_lists(data)
        if not lists:
            logger.debug("Candidate %s returned JSON without an entity list", url)
            return None

        confidence = 0.5
        if min(c.depth for c in lists) <= 2:
            confidence += 0.2
        if query.lower() in body.lower():
            confidence += 0.2
        if "json" in resp.headers.get("content-type", "").lower():
            confidence += 0.1
        path_template = None
        if "{query}" in candidate.template or "{slug}" in candidate.template:
            parsed = urlparse(candidate.template)
            path_template = parsed.path + (f"?{parsed.query}" if parsed.query else "")
        return ApiEndpoint(
            url=url,
            method="GET",
            status=resp.status_code,
            content_type=resp.headers.get("content-type"),
            sample_body=body if len(body) <= MAX_SAMPLE_CHARS else None,
            api_type=ApiType.REST,
            purpose=infer_purpose(candidate.template, body),
            confidence=round(min(confidence, 1.0), 2),
            path_template=path_template,
        )

    async def _try_graphql(self, candidate: _Candidate, profile: SiteProfile) -> ApiEndpoint | None:
        url = candidate.template
        headers = {**profile.required_headers, "Content-Type": "application/json"}
        resp = await self._client.post(url, json={"query": _TYPENAME_QUERY}, headers=headers)
        method = "POST"
        if resp.status_code in (400, 405) and parse_json(resp.text) is None:
            resp = await self._client.get(url, params={"query": _TYPENAME_QUERY}, headers=profile.required_headers)
            method = "GET"
        data = parse_json(resp.text)
        if not isinstance(data, dict):
            return None
        if "data" in data and resp.status_code == 200:
            confidence = 0.9
        elif "errors" in data:
            confidence = 0.6
        else:
            return None
        return ApiEndpoint(
            url=url,
            method=method,
            status=resp.status_code,
            content_type=resp.headers.get("content-type"),
            sample_body=resp.text[:MAX_SAMPLE_CHARS],
            api_type=ApiType.GRAPHQL,
            purpose=EndpointPurpose.SEARCH,
            confidence=confidence,
        )
