"""End-to-end tests for the autoconfig orchestrator over mocked sites."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from autoprovider.config import Config
from autoprovider.generator import GENERIC_ID
from autoprovider.models import Architecture, AutoconfigOptions, AutoconfigProgress, Stage
from autoprovider.orchestrator import AutoconfigOrchestrator
from autoprovider.storage import ProviderStore
from autoprovider.templates import build_library

_SEARCH_BODY = {"results": [{"title": "X", "id": "1", "thumb": "u"}]}
_ANIME_HOME = (
    "<html><head><title>AniTest - Watch anime</title></head>"
    "<body><script>fetch('/graphql')</script></body></html>"
)


@pytest.fixture
def store(tmp_path: Path) -> ProviderStore:
    return ProviderStore(tmp_path)


def _orchestrator(client: httpx.AsyncClient, store: ProviderStore) -> AutoconfigOrchestrator:
    return AutoconfigOrchestrator(client, build_library(), store, Config())


def _anime_site(schema_payload: dict[str, Any]):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/":
            if request.method == "HEAD":
                return httpx.Response(200)
            return httpx.Response(200, html=_ANIME_HOME)
        if path != "/graphql":
            return httpx.Response(404)
        if request.method != "POST":
            return httpx.Response(400, json={"errors": [{"message": "Must provide query string."}]})
        query = json.loads(request.content)["query"]
        if "__schema" in query:
            return httpx.Response(200, json=schema_payload)
        if "episodes" in query:
            return httpx.Response(
                200, json={"data": {"Page": [{"episodes": [{"id": "e1", "number": 1, "title": "Ep 1"}]}]}},
            )
        if "Page" in query:
            return httpx.Response(
                200, json={"data": {"Page": [{"id": "1", "name": " Naruto ", "coverImage": "/img/1.jpg"}]}},
            )
        return httpx.Response(200, json={"data": {"__typename": "Query"}})

    return handler


def _rest_site(api_answer: dict | None = None, title: str = "RestSite"):
    """REST site; when *api_answer* is set, JSON-only clients get it from search instead."""

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/":
            if request.method == "HEAD":
                return httpx.Response(200)
            return httpx.Response(200, html=f"<html><title>{title}</title></html>")
        if path == "/api/search":
            if api_answer is not None and request.headers.get("accept") == "application/json":
                return httpx.Response(200, json=api_answer)
            return httpx.Response(200, json=_SEARCH_BODY)
        return httpx.Response(404)

    return handler


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------


class TestSuccessfulRuns:
    @pytest.mark.asyncio
    async def test_graphql_site(self, client_for, store, show_schema) -> None:
        async with client_for(_anime_site(show_schema)) as client:
            result = await _orchestrator(client, store).analyze_and_configure(
                "https://anime.test/some/page", AutoconfigOptions(provider_name="AniTest"),
            )

        assert result.success, result.diagnostics
        assert result.template_id == "graphql-anime"
        assert result.fingerprint.architecture in (Architecture.GRAPHQL_KNOWN, Architecture.GRAPHQL_GENERIC)
        assert result.config.search.mapping_for("title").source_path == "name"
        assert result.config.last_validated_at is not None
        assert result.config.notes[0].startswith("Generated by the GraphQL Anime template")
        assert result.validation.passed
        assert result.validation.result_count == 1
        assert result.saved
        assert store.exists("AniTest")
        assert any("selected template graphql-anime" in m for m in result.messages(Stage.GENERATION))

    @pytest.mark.asyncio
    async def test_rest_site_dry_run(self, client_for, store) -> None:
        options = AutoconfigOptions(test_query="test", skip_validation=True, dry_run=True)
        async with client_for(_rest_site()) as client:
            result = await _orchestrator(client, store).analyze_and_configure("rest.test", options)

        assert result.success, result.diagnostics
        assert result.template_id.startswith("rest-")
        assert result.config.search.path == "/api/search?q={query}"
        assert result.validation is None
        assert "validation skipped" in result.messages(Stage.VALIDATION)
        assert "dry run, config not saved" in result.messages(Stage.STORAGE)
        assert not result.saved
        assert store.list_all() == []

    @pytest.mark.asyncio
    async def test_non_ascii_title_is_named_after_host(self, client_for, store) -> None:
        async with client_for(_rest_site(title="ワンピース - 公式")) as client:
            result = await _orchestrator(client, store).analyze_and_configure(
                "https://rest.test", AutoconfigOptions(test_query="test"),
            )

        assert result.success, result.diagnostics
        assert result.config.name == "Rest"
        assert result.config.slug == "rest"
        assert result.saved
        assert store.list_all() == ["rest"]

    @pytest.mark.asyncio
    async def test_build_does_not_close_a_borrowed_client(self, client_for, store) -> None:
        async with client_for(_rest_site()) as client:
            async with AutoconfigOrchestrator.build(Config(), client=client, store=store) as orchestrator:
                assert orchestrator.store is store
            assert not client.is_closed


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class TestProgress:
    @pytest.mark.asyncio
    async def test_every_stage_is_reported(self, client_for, store) -> None:
        updates: list[AutoconfigProgress] = []
        options = AutoconfigOptions(test_query="test", skip_validation=True, dry_run=True)
        async with client_for(_rest_site()) as client:
            result = await _orchestrator(client, store).analyze_and_configure("rest.test", options, updates.append)

        assert [u.stage for u in updates] == [
            Stage.PROBE,
            Stage.DISCOVERY,
            Stage.MATCHING,
            Stage.INTROSPECTION,
            Stage.FINGERPRINT,
            Stage.GENERATION,
            Stage.VALIDATION,
            Stage.STORAGE,
            Stage.COMPLETE,
        ]
        percentages = [u.percentage for u in updates]
        assert percentages == sorted(percentages) and percentages[-1] == 100
        assert updates[6].step == "skipped"
        assert all(u.succeeded is None for u in updates[:-1])
        assert updates[-1].succeeded is result.success is True

    @pytest.mark.asyncio
    async def test_unreachable_site_reports_failure(self, client_for, store) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        updates: list[AutoconfigProgress] = []
        async with client_for(handler) as client:
            await _orchestrator(client, store).analyze_and_configure("https://down.test", progress=updates.append)

        assert [u.stage for u in updates] == [Stage.PROBE, Stage.COMPLETE]
        assert updates[-1].step == "finished"
        assert updates[-1].succeeded is False


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_unreachable_site(self, client_for, store) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with client_for(handler) as client:
            result = await _orchestrator(client, store).analyze_and_configure("https://down.test")

        assert not result.success
        assert result.template_id == GENERIC_ID
        assert result.config.incomplete
        assert result.fingerprint.architecture == Architecture.UNKNOWN
        assert any("unreachable" in m for m in result.messages(Stage.PROBE))
        assert not result.saved

    @pytest.mark.asyncio
    async def test_invalid_url(self, client_for, store) -> None:
        async with client_for(lambda request: httpx.Response(200)) as client:
            result = await _orchestrator(client, store).analyze_and_configure("")

        assert not result.success
        assert result.config is None
        assert result.messages(Stage.PROBE)

    @pytest.mark.asyncio
    async def test_timeout_returns_partial_result(self, client_for, store) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200)

        async with client_for(handler) as client:
            result = await _orchestrator(client, store).analyze_and_configure(
                "https://slow.test", AutoconfigOptions(timeout=0.1),
            )

        assert result.timed_out
        assert not result.success
        assert any("timed out" in m for m in result.messages(Stage.PROBE))

    @pytest.mark.asyncio
    async def test_failed_validation_is_not_saved(self, client_for, store) -> None:
        handler = _rest_site(api_answer={"results": []})
        async with client_for(handler) as client:
            result = await _orchestrator(client, store).analyze_and_configure(
                "https://rest.test", AutoconfigOptions(test_query="test"),
            )

        assert not result.success
        assert not result.validation.passed
        assert not result.saved
        assert "config not saved because validation failed" in result.messages(Stage.STORAGE)
        assert store.list_all() == []

    @pytest.mark.asyncio
    async def test_accept_partial_saves_anyway(self, client_for, store) -> None:
        handler = _rest_site(api_answer={"results": []})
        async with client_for(handler) as client:
            result = await _orchestrator(client, store).analyze_and_configure(
                "https://rest.test", AutoconfigOptions(test_query="test", accept_partial=True, provider_name="Partial"),
            )

        assert not result.success
        assert result.saved
        assert store.list_all() == ["partial"]

    @pytest.mark.asyncio
    async def test_unsaveable_name_is_a_failure(self, client_for, store) -> None:
        options = AutoconfigOptions(test_query="test", provider_name="ワンピース")
        async with client_for(_rest_site()) as client:
            result = await _orchestrator(client, store).analyze_and_configure("https://rest.test", options)

        assert result.validation.passed
        assert not result.success
        assert not result.saved
        assert any(m.startswith("save failed: invalid provider name") for m in result.messages(Stage.STORAGE))
        assert store.list_all() == []
