"""Transform engine — execute a provider config against the live site.

The engine is the only component that talks to a configured site outside
analysis. It builds the request from an endpoint template, sends it,
follows the results path and applies each field mapping with its
transforms in declared order.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import quote, quote_plus, unquote, urljoin

import httpx

from autoprovider.analysis.discovery import slugify_query
from autoprovider.provider_config import (
    ApiType,
    DynamicProviderConfig,
    EndpointConfig,
    FieldMapping,
    TransformKind,
    TransformRule,
)
from autoprovider.utils import jsonpath

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")


class Operation(str, Enum):
    SEARCH = "search"
    DETAILS = "details"
    LIST_CHILDREN = "list_children"
    RESOLVE_LEAF = "resolve_leaf"
    BROWSE = "browse"


class EngineState(str, Enum):
    IDLE = "idle"
    BUILDING_REQUEST = "building_request"
    AWAITING_RESPONSE = "awaiting_response"
    EXTRACTING = "extracting"
    DONE = "done"
    FAILED = "failed"


_SECTIONS = {
    Operation.SEARCH: "search",
    Operation.DETAILS: "details",
    Operation.LIST_CHILDREN: "children",
    Operation.RESOLVE_LEAF: "media",
    Operation.BROWSE: "browse",
}


class RequestBuildError(Exception):
    """The request for an operation could not be built from the config."""


class ExtractionError(Exception):
    """A required field or the results list could not be read from a response."""

    def __init__(self, field: str, path: str, reason: str) -> None:
        self.field = field
        self.path = path
        self.reason = reason
        super().__init__(f"{field} ({path}): {reason}")


@dataclass(frozen=True)
class OperationResult:
    state: EngineState
    operation: Operation
    items: list[dict[str, Any]] = field(default_factory=list)
    url: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.state == EngineState.DONE

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


@dataclass(frozen=True)
class PreparedRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] | None = None
    json_body: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------


def _decode_base64(value: str) -> str:
    padded = value + "=" * (-len(value) % 4)
    decode = base64.urlsafe_b64decode if "-" in value or "_" in value else base64.b64decode
    try:
        return decode(padded).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value


def _decode_hex(value: str) -> str:
    try:
        return bytes.fromhex(value).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return value


def apply_transform(rule: TransformRule, value: Any) -> Any:
    """Apply one rule. Values a decoder cannot handle pass through unchanged."""
    if not isinstance(value, str):
        return value
    kind = rule.kind
    if kind == TransformKind.STRIP:
        return value.strip()
    if kind == TransformKind.DECODE_BASE64:
        return _decode_base64(value)
    if kind == TransformKind.DECODE_HEX:
        return _decode_hex(value)
    if kind == TransformKind.DECODE_PREFIXED_HEX:
        if not value.startswith("-"):
            return value
        return _decode_hex(value.lstrip("-"))
    if kind == TransformKind.URL_DECODE:
        return unquote(value)
    if kind == TransformKind.REPLACE:
        if not rule.pattern:
            return value
        return value.replace(rule.pattern, rule.replacement or "")
    if kind == TransformKind.REGEX_EXTRACT:
        if not rule.pattern:
            return value
        match = re.search(rule.pattern, value)
        if match is None:
            return value
        if rule.replacement:
            return match.expand(rule.replacement)
        return match.group(1) if match.groups() else match.group(0)
    if kind == TransformKind.URL_JOIN:
        if not value or not rule.base or re.match(r"^[a-z][a-z0-9+.-]*://", value, re.I):
            return value
        if value.startswith("//"):
            return "https:" + value
        return urljoin(rule.base, value)
    return value


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------


def _fill(template: str, params: dict[str, Any], *, encode: bool) -> str:
    """Substitute ``{name}`` placeholders, URL-encoding them when *encode* is set."""

    def lookup(match: re.Match[str]) -> str:
        name = match.group(1)
        if params.get(name) is None:
            raise RequestBuildError(f"missing parameter {name!r} for {template!r}")
        return str(params[name])

    if not encode:
        return _PLACEHOLDER_RE.sub(lookup, template)
    path, sep, query = template.partition("?")
    path = _PLACEHOLDER_RE.sub(lambda m: quote(lookup(m), safe=""), path)
    query = _PLACEHOLDER_RE.sub(lambda m: quote_plus(lookup(m)), query)
    return path + sep + query


def _fill_variables(value: Any, params: dict[str, Any]) -> Any:
    if isinstance(value, dict):
        return {k: _fill_variables(v, params) for k, v in value.items()}
    if isinstance(value, list):
        return [_fill_variables(v, params) for v in value]
    if isinstance(value, str):
        whole = _PLACEHOLDER_RE.fullmatch(value)
        if whole is not None:
            name = whole.group(1)
            if name not in params or params[name] is None:
                raise RequestBuildError(f"missing variable parameter {name!r}")
            return params[name]
        return _fill(value, params, encode=False)
    return value


def build_request(
    config: DynamicProviderConfig,
    endpoint: EndpointConfig,
    params: dict[str, Any],
) -> PreparedRequest:
    params = dict(params)
    if "slug" not in params:
        source = params.get("query") or params.get("title")
        if source is not None:
            params["slug"] = slugify_query(str(source))

    hosts = config.hosts
    headers = {"Accept": "application/json", **hosts.headers}
    if hosts.referer:
        headers["Referer"] = hosts.referer
    if hosts.user_agent:
        headers["User-Agent"] = hosts.user_agent
    base = (hosts.api_base or hosts.base_url).rstrip("/")

    if endpoint.method == ApiType.GRAPHQL:
        if not endpoint.query_template:
            raise RequestBuildError("graphql endpoint has no query")
        url = endpoint.path if endpoint.path.startswith("http") else base + "/" + endpoint.path.lstrip("/")
        variables = _fill_variables(endpoint.variables, params)
        if endpoint.verb == "GET":
            return PreparedRequest(
                method="GET",
                url=url,
                headers=headers,
                params={"query": endpoint.query_template, "variables": json.dumps(variables)},
            )
        return PreparedRequest(
            method="POST",
            url=url,
            headers={**headers, "Content-Type": "application/json"},
            json_body={"query": endpoint.query_template, "variables": variables},
        )

    if not endpoint.path:
        raise RequestBuildError("rest endpoint has no path")
    path = _fill(endpoint.path, params, encode=True)
    url = path if path.startswith("http") else base + "/" + path.lstrip("/")
    return PreparedRequest(method=endpoint.verb, url=url, headers=headers)


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _empty(value: Any) -> bool:
    return value is None or (isinstance(value, (str, list, dict)) and not value)


def extract_items(config: DynamicProviderConfig, endpoint: EndpointConfig, data: Any) -> list[dict[str, Any]]:
    """Follow the results path and map every item."""
    try:
        found = jsonpath.resolve(data, endpoint.results_path)
    except jsonpath.PathError as exc:
        raise ExtractionError("results", endpoint.results_path, exc.reason) from exc
    if found is None:
        return []
    items = found if isinstance(found, list) else [found]
    return [extract_fields(config, endpoint.mappings, item) for item in items]


def extract_fields(config: DynamicProviderConfig, mappings: list[FieldMapping], item: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for mapping in mappings:
        try:
            value = jsonpath.resolve(item, mapping.source_path)
        except jsonpath.PathError as exc:
            if mapping.required:
                raise ExtractionError(mapping.target_field, mapping.source_path, exc.reason) from exc
            out[mapping.target_field] = None
            continue
        for name in mapping.transforms:
            rule = config.transform(name)
            if rule is None:
                logger.debug("Unknown transform %r on %s", name, mapping.target_field)
                continue
            value = apply_transform(rule, value)
        if mapping.required and _empty(value):
            raise ExtractionError(mapping.target_field, mapping.source_path, "empty value")
        out[mapping.target_field] = value
    return out


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class TransformEngine:
    """Interpret a :class:`DynamicProviderConfig` for one operation at a time."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def execute(
        self,
        config: DynamicProviderConfig,
        operation: Operation,
        params: dict[str, Any] | None = None,
    ) -> OperationResult:
        """Run *operation*; failures come back as a ``FAILED`` result."""
        state = EngineState.IDLE
        url: str | None = None
        try:
            state = EngineState.BUILDING_REQUEST
            endpoint = getattr(config, _SECTIONS[operation])
            if endpoint is None:
                raise RequestBuildError(f"{config.name} does not support {operation.value}")
            request = build_request(config, endpoint, params or {})
            url = request.url

            state = EngineState.AWAITING_RESPONSE
            resp = await self._client.request(
                request.method,
                request.url,
                headers=request.headers,
                params=request.params,
                json=request.json_body,
            )
            resp.raise_for_status()

            state = EngineState.EXTRACTING
            try:
                data = resp.json()
            except ValueError as exc:
                raise ExtractionError("results", endpoint.results_path, "response is not JSON") from exc
            if isinstance(data, dict) and data.get("errors") and not data.get("data"):
                raise ExtractionError("results", endpoint.results_path, f"graphql errors: {data['errors']}")
            items = extract_items(config, endpoint, data)
        except (RequestBuildError, ExtractionError, httpx.HTTPError) as exc:
            logger.info("%s %s failed while %s: %s", config.name, operation.value, state.value, exc)
            return OperationResult(state=EngineState.FAILED, operation=operation, url=url, error=exc)
        logger.debug("%s %s -> %d item(s)", config.name, operation.value, len(items))
        return OperationResult(state=EngineState.DONE, operation=operation, items=items, url=url)
