"""Schema generator — turn inferred field roles into a provider config.

The helpers here are shared by every template. :class:`SchemaGenerator`
itself is the template-agnostic path used by the generic template: it maps
whatever the matcher and introspector found straight onto a config.
"""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import urlparse

from autoprovider.analysis.matcher import find_entity_lists, infer_roles
from autoprovider.models import (
    ApiEndpoint,
    CandidateQuery,
    ContentSchema,
    FieldRole,
    QueryPurpose,
    Role,
    SiteProfile,
)
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
from autoprovider.schemas import GenerationError, require_roles
from autoprovider.utils import jsonpath
from autoprovider.utils.http import parse_json

logger = logging.getLogger(__name__)

GENERIC_ID = "generic"

TARGET_FIELDS: dict[Role, str] = {
    Role.ID: "id",
    Role.TITLE: "title",
    Role.IMAGE: "image",
    Role.SYNOPSIS: "synopsis",
    Role.DETAIL_PAGE: "url",
    Role.NUMBER: "number",
    Role.STREAM_URL: "url",
    Role.EPISODE_LIST: "episodes",
    Role.CHAPTER_LIST: "chapters",
    Role.PAGE_LIST: "pages",
}
_SEARCH_ROLES = (Role.ID, Role.TITLE, Role.IMAGE, Role.SYNOPSIS, Role.DETAIL_PAGE)
_CHILD_ROLES = (Role.ID, Role.NUMBER, Role.TITLE, Role.DETAIL_PAGE, Role.STREAM_URL)

_TRIM = TransformRule(name="trim", kind=TransformKind.STRIP)
_DECODERS: dict[str, TransformRule] = {
    "prefixed_hex": TransformRule(name="decode-prefixed-hex", kind=TransformKind.DECODE_PREFIXED_HEX),
    "hex": TransformRule(name="decode-hex", kind=TransformKind.DECODE_HEX),
    "base64": TransformRule(name="decode-base64", kind=TransformKind.DECODE_BASE64),
}
_TITLE_SEPARATORS = re.compile(r"\s*[-|–:•]\s*")


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


def slugify(name: str) -> str:
    slug = name.strip().lower().replace(" ", "-").replace(".", "").replace("_", "-")
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    return re.sub(r"-{2,}", "-", slug).strip("-")


def provider_name(profile: SiteProfile, override: str | None = None) -> str:
    """Explicit name, else the site title's first segment, else the bare host.

    A title segment that would slugify to nothing (a title with no ASCII
    letters or digits) is skipped in favour of the host.
    """
    if override and override.strip():
        return override.strip()
    if profile.title:
        first = _TITLE_SEPARATORS.split(profile.title.strip())[0].strip()
        if len(first) >= 2 and slugify(first):
            return first
    host = urlparse(profile.base_url).netloc.split(":")[0].removeprefix("www.")
    stem = host.rsplit(".", 1)[0] if "." in host else host
    name = stem.replace(".", " ").capitalize()
    return name if slugify(name) else "Provider"


# ---------------------------------------------------------------------------
# Shared building blocks
# ---------------------------------------------------------------------------


def host_config(profile: SiteProfile, api_base: str | None = None) -> HostConfig:
    headers = {k: v for k, v in profile.required_headers.items() if k.lower() != "referer"}
    return HostConfig(
        base_url=profile.base_url,
        api_base=api_base if api_base and api_base != profile.base_url else None,
        referer=profile.required_headers.get("Referer", profile.base_url + "/"),
        headers=headers,
    )


def transforms_for(profile: SiteProfile, schema: ContentSchema) -> list[TransformRule]:
    rules = [_TRIM, TransformRule(name="absolute-url", kind=TransformKind.URL_JOIN, base=profile.base_url + "/")]
    rules.extend(_DECODERS[name] for name in schema.encodings if name in _DECODERS)
    return rules


def _transforms_for_role(role: Role, rules: list[TransformRule]) -> list[str]:
    names = {r.name for r in rules}
    if role == Role.TITLE:
        return ["trim"]
    if role in (Role.IMAGE, Role.DETAIL_PAGE):
        return ["absolute-url"] if "absolute-url" in names else []
    if role == Role.STREAM_URL:
        decoders = [r.name for r in rules if r.kind in (
            TransformKind.DECODE_PREFIXED_HEX, TransformKind.DECODE_HEX, TransformKind.DECODE_BASE64,
        )]
        return decoders[:1] + (["absolute-url"] if "absolute-url" in names else [])
    return []


def mappings_from_roles(
    fields: dict[Role, FieldRole],
    roles: tuple[Role, ...],
    required: tuple[Role, ...],
    rules: list[TransformRule],
) -> list[FieldMapping]:
    mappings: list[FieldMapping] = []
    seen: set[str] = set()
    for role in roles:
        found = fields.get(role)
        target = TARGET_FIELDS[role]
        if found is None or target in seen:
            continue
        seen.add(target)
        mappings.append(
            FieldMapping(
                source_path=found.path,
                target_field=target,
                required=role in required,
                transforms=_transforms_for_role(role, rules),
            )
        )
    return mappings


def _child_required(fields: dict[Role, FieldRole]) -> tuple[Role, ...]:
    if Role.ID in fields:
        return (Role.ID,)
    if Role.NUMBER in fields:
        return (Role.NUMBER,)
    return ()


def _first_item_path(results_path: str) -> str:
    if "[*]" in results_path:
        head, _, tail = results_path.partition("[*]")
        return f"{head}[0]{tail}"
    return jsonpath.join(results_path, 0)


def _child_list_role(content_type: ContentType) -> Role:
    return Role.CHAPTER_LIST if content_type == ContentType.MANGA else Role.EPISODE_LIST


# ---------------------------------------------------------------------------
# REST
# ---------------------------------------------------------------------------


def _rest_location(endpoint: ApiEndpoint, profile: SiteProfile) -> tuple[str | None, str]:
    parsed = urlparse(endpoint.url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    path = endpoint.path_template or (parsed.path + (f"?{parsed.query}" if parsed.query else ""))
    return (origin if origin != profile.base_url else None), path


def _rest_prefix(path: str) -> str:
    bare = path.split("?", 1)[0].rstrip("/")
    head, _, last = bare.rpartition("/")
    if "search" in last or "{" in last:
        return head
    return bare


def _embedded_child_roles(schema: ContentSchema, role: Role) -> dict[Role, FieldRole]:
    """Roles of the child objects nested in the first sampled result."""
    found = schema.fields.get(role)
    if found is None or schema.endpoint is None or schema.results_path is None:
        return {}
    data = parse_json(schema.endpoint.sample_body)
    items = jsonpath.get(data, schema.results_path, [])
    for item in items if isinstance(items, list) else []:
        children = jsonpath.get(item, found.path)
        if isinstance(children, list) and children and all(isinstance(c, dict) for c in children):
            return infer_roles(children)
    return {}


def _endpoint_roles(endpoint: ApiEndpoint) -> tuple[str, dict[Role, FieldRole]]:
    lists = find_entity_lists(parse_json(endpoint.sample_body))
    if not lists:
        return "$", {}
    best = min(lists, key=lambda c: (c.depth, -c.coverage))
    return best.path, best.fields


def build_rest_config(
    profile: SiteProfile,
    schema: ContentSchema,
    name: str,
    *,
    template_id: str,
    content_type: ContentType,
) -> DynamicProviderConfig:
    require_roles(schema, template_id)
    endpoint = schema.endpoint
    if endpoint is None or endpoint.api_type != ApiType.REST or schema.results_path is None:
        raise GenerationError(template_id, ["rest search endpoint"])

    rules = transforms_for(profile, schema)
    api_base, path = _rest_location(endpoint, profile)
    search = EndpointConfig(
        method=ApiType.REST,
        path=path,
        results_path=schema.results_path,
        mappings=mappings_from_roles(schema.fields, _SEARCH_ROLES, (Role.ID, Role.TITLE), rules),
    )

    notes: list[str] = []
    prefix = _rest_prefix(path)
    child_role = _child_list_role(content_type)
    child_key = TARGET_FIELDS[child_role]
    discovered = next(
        (e for e in schema.child_endpoints if e.path_template and e.api_type == ApiType.REST), None,
    )
    if Role.EPISODE_LIST in schema.fields or Role.CHAPTER_LIST in schema.fields:
        role = child_role if child_role in schema.fields else next(
            r for r in (Role.EPISODE_LIST, Role.CHAPTER_LIST) if r in schema.fields
        )
        child_fields = _embedded_child_roles(schema, role)
        children = EndpointConfig(
            method=ApiType.REST,
            path=path.replace("{query}", "{title}"),
            results_path=jsonpath.join(_first_item_path(schema.results_path), schema.fields[role].path),
            mappings=mappings_from_roles(child_fields, _CHILD_ROLES, _child_required(child_fields), rules),
        )
        notes.append("Child list is read from the first search result for the item's title")
    elif discovered is not None:
        results_path, child_fields = _endpoint_roles(discovered)
        children = EndpointConfig(
            method=ApiType.REST,
            path=discovered.path_template or "",
            results_path=results_path,
            mappings=mappings_from_roles(child_fields, _CHILD_ROLES, _child_required(child_fields), rules),
        )
    else:
        defaults = {
            Role.ID: FieldRole(role=Role.ID, path="id", confidence=0.0),
            Role.NUMBER: FieldRole(role=Role.NUMBER, path="number", confidence=0.0),
            Role.TITLE: FieldRole(role=Role.TITLE, path="title", confidence=0.0),
        }
        children = EndpointConfig(
            method=ApiType.REST,
            path=f"{prefix}/info/{{id}}",
            results_path=f"$.{child_key}",
            mappings=mappings_from_roles(defaults, _CHILD_ROLES, (Role.ID,), rules),
        )
        notes.append(f"Child list follows the {prefix}/info/{{id}} convention")

    details = EndpointConfig(
        method=ApiType.REST,
        path=f"{prefix}/info/{{id}}",
        results_path="$",
        mappings=mappings_from_roles(schema.fields, _SEARCH_ROLES, (), rules),
    )
    if content_type == ContentType.MANGA:
        media_roles = {
            Role.STREAM_URL: FieldRole(role=Role.STREAM_URL, path="img", confidence=0.0),
            Role.NUMBER: FieldRole(role=Role.NUMBER, path="page", confidence=0.0),
        }
        media = EndpointConfig(
            method=ApiType.REST, path=f"{prefix}/read/{{id}}", results_path="$",
            mappings=mappings_from_roles(media_roles, (Role.STREAM_URL, Role.NUMBER), (Role.STREAM_URL,), rules),
        )
    else:
        media_roles = {Role.STREAM_URL: FieldRole(role=Role.STREAM_URL, path="url", confidence=0.0)}
        media = EndpointConfig(
            method=ApiType.REST, path=f"{prefix}/watch/{{id}}", results_path="$.sources",
            mappings=mappings_from_roles(media_roles, (Role.STREAM_URL,), (Role.STREAM_URL,), rules)
            + [FieldMapping(source_path="quality", target_field="quality")],
        )

    return DynamicProviderConfig(
        name=name,
        slug=slugify(name),
        content_type=content_type,
        template_id=template_id,
        hosts=host_config(profile, api_base),
        search=search,
        details=details,
        children=children,
        media=media,
        transforms=rules,
        notes=notes + _site_notes(profile, schema),
    )


# ---------------------------------------------------------------------------
# GraphQL
# ---------------------------------------------------------------------------


def _pick_child(candidates: list[CandidateQuery], purpose: QueryPurpose, term: str) -> CandidateQuery | None:
    pool = [c for c in candidates if c.purpose == purpose]
    for candidate in pool:
        if term in candidate.name.lower():
            return candidate
    return pool[0] if pool else None


def _graphql_endpoint(
    candidate: CandidateQuery,
    http_method: str,
    path: str,
    rules: list[TransformRule],
    roles: tuple[Role, ...],
    fields: dict[Role, FieldRole] | None = None,
    required: tuple[Role, ...] | None = None,
) -> EndpointConfig:
    fields = fields if fields is not None else candidate.fields
    return EndpointConfig(
        method=ApiType.GRAPHQL,
        http_method=http_method,
        path=path,
        query_template=candidate.query,
        variables=dict(candidate.variables),
        results_path=candidate.results_path,
        mappings=mappings_from_roles(fields, roles, required if required is not None else _child_required(fields), rules),
        entity_type=candidate.entity_type,
    )


def build_graphql_config(
    profile: SiteProfile,
    schema: ContentSchema,
    name: str,
    *,
    template_id: str,
    content_type: ContentType,
) -> DynamicProviderConfig:
    require_roles(schema, template_id)
    info = schema.graphql
    if info is None:
        raise GenerationError(template_id, ["graphql schema"])
    search_query = info.best(QueryPurpose.SEARCH) or info.best(QueryPurpose.LIST)
    if search_query is None:
        raise GenerationError(template_id, ["graphql search query"])

    rules = transforms_for(profile, schema)
    parsed = urlparse(info.endpoint)
    api_base = f"{parsed.scheme}://{parsed.netloc}"
    path = parsed.path or "/"
    http_method = "POST"
    if schema.endpoint is not None and schema.endpoint.api_type == ApiType.GRAPHQL:
        http_method = schema.endpoint.method

    search = _graphql_endpoint(
        search_query, http_method, path, rules, _SEARCH_ROLES,
        fields=schema.fields, required=(Role.ID, Role.TITLE),
    )
    term = "chapter" if content_type == ContentType.MANGA else "episode"
    child_query = _pick_child(info.candidates, QueryPurpose.CHILDREN, term)
    children = (
        _graphql_endpoint(child_query, http_method, path, rules, _CHILD_ROLES)
        if child_query is not None else None
    )
    media_query = _pick_child(info.candidates, QueryPurpose.MEDIA, "page")
    media = (
        _graphql_endpoint(media_query, http_method, path, rules, (Role.STREAM_URL, Role.DETAIL_PAGE, Role.NUMBER))
        if media_query is not None else None
    )
    details_query = info.best(QueryPurpose.DETAILS)
    details = (
        _graphql_endpoint(details_query, http_method, path, rules, _SEARCH_ROLES, required=())
        if details_query is not None else None
    )
    notes = [f"Search uses GraphQL query '{search_query.name}' returning {search_query.entity_type or 'items'}"]
    if child_query is not None:
        notes.append(f"Child list uses '{child_query.name}'")

    return DynamicProviderConfig(
        name=name,
        slug=slugify(name),
        content_type=content_type,
        template_id=template_id,
        hosts=host_config(profile, api_base),
        search=search,
        details=details,
        children=children,
        media=media,
        transforms=rules,
        notes=notes + _site_notes(profile, schema),
    )


def _site_notes(profile: SiteProfile, schema: ContentSchema) -> list[str]:
    notes = [f"Site type: {profile.site_type.value}"]
    if profile.has_tag("cloudflare"):
        notes.append("Cloudflare protection detected")
    if schema.endpoint is None and schema.graphql is None:
        notes.append("No API endpoints discovered")
    return notes


# ---------------------------------------------------------------------------
# Template-agnostic generation
# ---------------------------------------------------------------------------


class SchemaGenerator:
    """Map discovered fields directly onto a config, whatever the architecture."""

    def generate(
        self,
        profile: SiteProfile,
        schema: ContentSchema,
        name: str,
        *,
        template_id: str = GENERIC_ID,
    ) -> DynamicProviderConfig:
        require_roles(schema, template_id)
        content_type = schema.content_type or profile.content_hint or ContentType.BOTH
        if schema.graphql is not None and (
            schema.graphql.best(QueryPurpose.SEARCH) or schema.graphql.best(QueryPurpose.LIST)
        ):
            config = build_graphql_config(
                profile, schema, name, template_id=template_id, content_type=content_type,
            )
        else:
            config = build_rest_config(
                profile, schema, name, template_id=template_id, content_type=content_type,
            )
        logger.info("Generated %s config for %s", config.template_id, profile.base_url)
        return config

    def placeholder(self, profile: SiteProfile, name: str, reason: str) -> DynamicProviderConfig:
        """An explicitly incomplete config for sites nothing could be inferred from."""
        return DynamicProviderConfig(
            name=name,
            slug=slugify(name),
            content_type=profile.content_hint or ContentType.BOTH,
            template_id=GENERIC_ID,
            incomplete=True,
            hosts=host_config(profile),
            search=EndpointConfig(),
            notes=[f"Incomplete: {reason}"],
        )


def describe(config: DynamicProviderConfig) -> dict[str, Any]:
    """Short summary used by the CLI."""
    return {
        "name": config.name,
        "slug": config.slug,
        "template": config.template_id,
        "content_type": config.content_type.name.lower(),
        "search": config.search.path or config.search.query_template,
        "incomplete": config.incomplete,
    }
