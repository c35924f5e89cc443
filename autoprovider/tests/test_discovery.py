"""Tests for the endpoint discoverer."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from autoprovider.analysis.discovery import EndpointDiscoverer, infer_purpose, slugify_query
from autoprovider.models import ApiEndpoint, EndpointPurpose, SiteProfile
from autoprovider.provider_config import ApiType

_RESULTS = {"results": [{"title": "X", "id": "1", "thumb": "u"}]}


def _rest_site(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/search" and request.url.params.get("q") == "test":
        return httpx.Response(200, json=_RESULTS)
    return httpx.Response(404)


class TestInferPurpose:
    def test_from_path(self) -> None:
        assert infer_purpose("https://x.test/api/search?q=naruto") == EndpointPurpose.SEARCH
        assert infer_purpose("https://x.test/api/episodes/1") == EndpointPurpose.EPISODES
        assert infer_purpose("https://x.test/manga/chapter/9") == EndpointPurpose.CHAPTERS
        assert infer_purpose("https://x.test/anime/{slug}") == EndpointPurpose.DETAILS

    def test_from_body(self) -> None:
        body = '{"episodes": [{"id": 1}]}'
        assert infer_purpose("https://x.test/api/data", body) == EndpointPurpose.EPISODES

    def test_unknown(self) -> None:
        assert infer_purpose("https://x.test/api/data") == EndpointPurpose.UNKNOWN


def test_slugify_query() -> None:
    assert slugify_query("Attack on Titan!") == "attack-on-titan"


class TestCandidates:
    def test_graphql_first_and_deduplicated(self) -> None:
        profile = SiteProfile(
            base_url="https://x.test",
            endpoints=[ApiEndpoint(url="https://x.test/graphql", api_type=ApiType.GRAPHQL)],
            api_hints=["/api/v2/search", "/api/graphql/"],
        )
        candidates = EndpointDiscoverer(httpx.AsyncClient())._candidates(profile)
        templates = [c.template for c in candidates]

        assert templates[:3] == ["https://x.test/graphql", "https://x.test/api/graphql", "https://x.test/gql"]
        assert templates.count("https://x.test/graphql") == 1
        assert "https://x.test/api/v2/search?q={query}" in templates
        assert [c.order for c in candidates] == list(range(len(candidates)))


class TestDiscover:
    @pytest.mark.asyncio
    async def test_rest_search_endpoint(self, client_for, rest_profile) -> None:
        async with client_for(_rest_site) as client:
            endpoints = await EndpointDiscoverer(client).discover(rest_profile, "test")

        assert len(endpoints) == 1
        endpoint = endpoints[0]
        assert endpoint.url == "https://rest.test/api/search?q=test"
        assert endpoint.api_type == ApiType.REST
        assert endpoint.purpose == EndpointPurpose.SEARCH
        assert endpoint.path_template == "/api/search?q={query}"
        assert endpoint.confidence == 0.8

    @pytest.mark.asyncio
    async def test_query_echo_raises_confidence(self, client_for, rest_profile) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/search":
                return httpx.Response(200, json={"items": [{"id": 1, "title": "Test Show"}]})
            return httpx.Response(404)

        async with client_for(handler) as client:
            endpoints = await EndpointDiscoverer(client).discover(rest_profile, "test")
        assert endpoints[0].confidence == 1.0

    @pytest.mark.asyncio
    async def test_json_without_entity_list_is_rejected(self, client_for, rest_profile) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json={"status": "ok"})
            return httpx.Response(404)

        async with client_for(handler) as client:
            assert await EndpointDiscoverer(client).discover(rest_profile, "test") == []

    @pytest.mark.asyncio
    async def test_graphql_post(self, client_for, rest_profile) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST" and request.url.path == "/graphql":
                return httpx.Response(200, json={"data": {"__typename": "Query"}})
            return httpx.Response(404)

        async with client_for(handler) as client:
            endpoints = await EndpointDiscoverer(client).discover(rest_profile, "test")

        assert len(endpoints) == 1
        assert endpoints[0].api_type == ApiType.GRAPHQL
        assert endpoints[0].method == "POST"
        assert endpoints[0].confidence == 0.9

    @pytest.mark.asyncio
    async def test_graphql_get_fallback(self, client_for, rest_profile) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path != "/gql":
                return httpx.Response(404)
            if request.method == "POST":
                return httpx.Response(405, text="Method Not Allowed")
            return httpx.Response(200, json={"data": {"__typename": "Query"}})

        async with client_for(handler) as client:
            endpoints = await EndpointDiscoverer(client).discover(rest_profile, "test")

        assert [(e.url, e.method) for e in endpoints] == [("https://rest.test/gql", "GET")]

    @pytest.mark.asyncio
    async def test_graphql_errors_only_is_lower_confidence(self, client_for, rest_profile) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/graphql":
                return httpx.Response(400, json={"errors": [{"message": "bad query"}]})
            return httpx.Response(404)

        async with client_for(handler) as client:
            endpoints = await EndpointDiscoverer(client).discover(rest_profile, "test")
        assert endpoints[0].confidence == 0.6

    @pytest.mark.asyncio
    async def test_sorted_by_confidence(self, client_for, rest_profile) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/graphql":
                return httpx.Response(200, json={"data": {"__typename": "Query"}})
            return _rest_site(request)

        async with client_for(handler) as client:
            endpoints = await EndpointDiscoverer(client).discover(rest_profile, "test")
        assert [e.api_type for e in endpoints] == [ApiType.GRAPHQL, ApiType.REST]

    @pytest.mark.asyncio
    async def test_failing_candidates_do_not_abort(self, client_for, rest_profile) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/search":
                return _rest_site(request)
            raise httpx.ConnectError("refused", request=request)

        async with client_for(handler) as client:
            endpoints = await EndpointDiscoverer(client).discover(rest_profile, "test")
        assert [e.url for e in endpoints] == ["https://rest.test/api/search?q=test"]

    @pytest.mark.asyncio
    async def test_timeout_keeps_finished_results(self, client_for, rest_profile) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/gql":
                await asyncio.sleep(5)
            return _rest_site(request)

        async with client_for(handler) as client:
            discoverer = EndpointDiscoverer(client, max_workers=4, timeout=0.5)
            endpoints = await discoverer.discover(rest_profile, "test")
        assert [e.url for e in endpoints] == ["https://rest.test/api/search?q=test"]
