"""Shared fixtures: mocked HTTP clients and introspection payloads."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from autoprovider.analysis.introspector import generate_queries, parse_schema
from autoprovider.analysis.matcher import ContentPatternMatcher
from autoprovider.models import ApiEndpoint, ContentSchema, EndpointPurpose, GraphQLSchemaInfo, SiteProfile
from autoprovider.provider_config import (
    ApiType,
    ContentType,
    DynamicProviderConfig,
    EndpointConfig,
    FieldMapping,
    HostConfig,
    TransformKind,
    TransformRule,
)

# ---------------------------------------------------------------------------
# Introspection payload builders
# ---------------------------------------------------------------------------


def _named(kind: str, name: str) -> dict[str, Any]:
    return {"kind": kind, "name": name, "ofType": None}


def _list(ref: dict[str, Any]) -> dict[str, Any]:
    return {"kind": "LIST", "name": None, "ofType": ref}


def _non_null(ref: dict[str, Any]) -> dict[str, Any]:
    return {"kind": "NON_NULL", "name": None, "ofType": ref}


def _field(name: str, ref: dict[str, Any], *args: dict[str, Any]) -> dict[str, Any]:
    return {"name": name, "description": None, "args": list(args), "type": ref}


def _arg(name: str, ref: dict[str, Any]) -> dict[str, Any]:
    return {"name": name, "type": ref, "defaultValue": None}


def _object(name: str, *fields: dict[str, Any]) -> dict[str, Any]:
    return {"kind": "OBJECT", "name": name, "description": None, "fields": list(fields), "inputFields": None}


_SCALARS = [
    {"kind": "SCALAR", "name": n, "description": None, "fields": None, "inputFields": None}
    for n in ("ID", "String", "Int", "Boolean")
]
_STRING = _named("SCALAR", "String")
_ID = _named("SCALAR", "ID")
_INT = _named("SCALAR", "Int")


def _payload(*types: dict[str, Any]) -> dict[str, Any]:
    return {
        "data": {
            "__schema": {
                "queryType": {"name": "Query"},
                "mutationType": None,
                "types": [*types, *_SCALARS, _object("__Type", _field("name", _STRING))],
            }
        }
    }


@pytest.fixture
def show_schema() -> dict[str, Any]:
    """``Page(search: String): [Show]`` where Show has name, id, coverImage, episodes."""
    return _payload(
        _object("Query", _field("Page", _list(_named("OBJECT", "Show")), _arg("search", _STRING))),
        _object(
            "Show",
            _field("id", _ID),
            _field("name", _STRING),
            _field("coverImage", _STRING),
            _field("episodes", _list(_named("OBJECT", "Episode"))),
        ),
        _object("Episode", _field("id", _ID), _field("number", _INT), _field("title", _STRING)),
    )


@pytest.fixture
def connection_schema() -> dict[str, Any]:
    """A Relay-style connection search plus a lookup by id."""
    return _payload(
        _object(
            "Query",
            _field(
                "searchManga",
                _named("OBJECT", "MangaConnection"),
                _arg("search", _STRING),
                _arg("first", _non_null(_INT)),
            ),
            _field("manga", _named("OBJECT", "Manga"), _arg("id", _non_null(_ID))),
        ),
        _object("MangaConnection", _field("edges", _list(_named("OBJECT", "MangaEdge")))),
        _object("MangaEdge", _field("node", _named("OBJECT", "Manga"))),
        _object(
            "Manga",
            _field("id", _ID),
            _field("title", _STRING),
            _field("cover", _STRING),
            _field("chapters", _list(_named("OBJECT", "Chapter"))),
        ),
        _object("Chapter", _field("id", _ID), _field("chapter", _STRING), _field("title", _STRING)),
    )


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def client_for() -> Callable[[Callable[..., Any]], httpx.AsyncClient]:
    """Build an AsyncClient whose requests are answered by *handler*."""

    def build(handler: Callable[..., Any]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)

    return build


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------


REST_BODY = {"results": [{"title": "X", "id": "1", "thumb": "u"}]}


@pytest.fixture
def rest_profile() -> SiteProfile:
    return SiteProfile(
        base_url="https://rest.test",
        required_headers={"Referer": "https://rest.test/", "Origin": "https://rest.test"},
    )


@pytest.fixture
def rest_endpoint() -> ApiEndpoint:
    """What discovery records for ``/api/search?q=test`` on the REST site."""
    return ApiEndpoint(
        url="https://rest.test/api/search?q=test",
        status=200,
        content_type="application/json",
        sample_body=json.dumps(REST_BODY),
        api_type=ApiType.REST,
        purpose=EndpointPurpose.SEARCH,
        confidence=0.8,
        path_template="/api/search?q={query}",
    )


@pytest.fixture
def rest_schema(rest_profile, rest_endpoint) -> ContentSchema:
    return ContentPatternMatcher().match(rest_profile, [rest_endpoint])


@pytest.fixture
def graphql_profile() -> SiteProfile:
    return SiteProfile(
        base_url="https://anime.test",
        tags=frozenset({"graphql"}),
        content_hint=ContentType.ANIME,
        required_headers={"Referer": "https://anime.test/", "Origin": "https://anime.test"},
    )


@pytest.fixture
def graphql_info(show_schema) -> GraphQLSchemaInfo:
    info = parse_schema("https://anime.test/graphql", show_schema)
    return info.model_copy(update={"candidates": generate_queries(info, ContentType.ANIME)})


@pytest.fixture
def graphql_schema(graphql_info) -> ContentSchema:
    return ContentPatternMatcher().refine_with_graphql(ContentSchema(content_type=ContentType.ANIME), graphql_info)


@pytest.fixture
def rest_config() -> DynamicProviderConfig:
    return DynamicProviderConfig(
        name="Rest Test",
        slug="rest-test",
        content_type=ContentType.ANIME,
        template_id="rest-anime",
        hosts=HostConfig(base_url="https://rest.test", referer="https://rest.test/"),
        search=EndpointConfig(
            path="/api/search?q={query}",
            results_path="$.results",
            mappings=[
                FieldMapping(source_path="id", target_field="id", required=True),
                FieldMapping(source_path="title", target_field="title", required=True, transforms=["trim"]),
                FieldMapping(source_path="thumb", target_field="image", transforms=["absolute-url"]),
            ],
        ),
        children=EndpointConfig(
            path="/api/info/{id}",
            results_path="$.episodes",
            mappings=[
                FieldMapping(source_path="id", target_field="id", required=True),
                FieldMapping(source_path="number", target_field="number"),
            ],
        ),
        media=EndpointConfig(
            path="/api/watch/{id}",
            results_path="$.sources",
            mappings=[
                FieldMapping(source_path="url", target_field="url", required=True, transforms=["decode-prefixed-hex"]),
            ],
        ),
        transforms=[
            TransformRule(name="trim", kind=TransformKind.STRIP),
            TransformRule(name="absolute-url", kind=TransformKind.URL_JOIN, base="https://rest.test/"),
            TransformRule(name="decode-prefixed-hex", kind=TransformKind.DECODE_PREFIXED_HEX),
        ],
    )


@pytest.fixture
def graphql_config() -> DynamicProviderConfig:
    return DynamicProviderConfig(
        name="Gql Test",
        slug="gql-test",
        content_type=ContentType.ANIME,
        template_id="graphql-anime",
        hosts=HostConfig(base_url="https://gql.test"),
        search=EndpointConfig(
            method=ApiType.GRAPHQL,
            http_method="POST",
            path="/graphql",
            query_template="query ($search: String) { Page(search: $search) { id name } }",
            variables={"search": "{query}", "page": 1},
            results_path="$.data.Page",
            mappings=[
                FieldMapping(source_path="id", target_field="id", required=True),
                FieldMapping(source_path="name", target_field="title", required=True),
            ],
        ),
        details=EndpointConfig(
            method=ApiType.GRAPHQL,
            path="/graphql",
            query_template="query ($id: ID!) { show(id: $id) { id name } }",
            variables={"id": "{id}"},
            results_path="$.data.show",
            mappings=[FieldMapping(source_path="name", target_field="title")],
        ),
    )
