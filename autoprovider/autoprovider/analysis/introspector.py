"""GraphQL introspector — recover a schema and propose ranked catalog queries."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from autoprovider.analysis.matcher import NESTED_PREFERENCE, role_for_key, tokenize
from autoprovider.models import (
    ANIME_ROLES,
    MANGA_ROLES,
    REQUIRED_ROLES,
    CandidateQuery,
    FieldRole,
    GraphQLArgument,
    GraphQLField,
    GraphQLSchemaInfo,
    GraphQLType,
    QueryPurpose,
    Role,
    SiteProfile,
)
from autoprovider.provider_config import ContentType
from autoprovider.utils.http import parse_json

logger = logging.getLogger(__name__)

_TYPE_REF = "name kind ofType { name kind ofType { name kind ofType { name kind } } }"

FULL_INTROSPECTION_QUERY = f"""
query IntrospectionQuery {{
  __schema {{
    queryType {{ name }}
    mutationType {{ name }}
    types {{
      kind
      name
      description
      fields(includeDeprecated: false) {{
        name
        description
        args {{ name type {{ {_TYPE_REF} }} defaultValue }}
        type {{ {_TYPE_REF} }}
      }}
      inputFields {{ name type {{ {_TYPE_REF} }} defaultValue }}
      enumValues {{ name }}
    }}
  }}
}}
"""

LIGHT_INTROSPECTION_QUERY = "query { __schema { types { name kind } } }"

_SEARCH_ARGS = ("search", "query", "keyword", "keywords", "q", "term", "title", "name", "filter")
_ID_ARGS = ("id", "_id", "slug")
_LEAF_KINDS = ("SCALAR", "ENUM")
_MAX_SELECTION = 12

_TARGET_TERMS: dict[ContentType, tuple[str, ...]] = {
    ContentType.ANIME: ("anime", "show", "series", "media", "episode", "video", "title"),
    ContentType.MANGA: ("manga", "comic", "book", "series", "media", "chapter", "manhwa", "title"),
}

# Weights keep the ranking lexicographic: name match, then coverage, then nesting.
_W_NAME, _W_COVERAGE, _W_NESTING = 0.45, 0.4, 0.15


def _unwrap(ref: dict[str, Any] | None) -> tuple[str, str, str, bool]:
    """Return (display name, base name, base kind, is_list) for a type reference."""
    if not ref:
        return "Unknown", "Unknown", "SCALAR", False
    kind = ref.get("kind")
    if kind == "NON_NULL":
        display, base, base_kind, is_list = _unwrap(ref.get("ofType"))
        return display + "!", base, base_kind, is_list
    if kind == "LIST":
        display, base, base_kind, _ = _unwrap(ref.get("ofType"))
        return f"[{display}]", base, base_kind, True
    name = ref.get("name") or "Unknown"
    return name, name, kind or "SCALAR", False


def _parse_argument(raw: dict[str, Any]) -> GraphQLArgument:
    display, base, base_kind, _ = _unwrap(raw.get("type"))
    return GraphQLArgument(name=raw.get("name", ""), type_name=display, base_type=base, base_kind=base_kind)


def _parse_field(raw: dict[str, Any]) -> GraphQLField:
    display, base, base_kind, is_list = _unwrap(raw.get("type"))
    return GraphQLField(
        name=raw.get("name", ""),
        type_name=display,
        base_type=base,
        base_kind=base_kind,
        is_list=is_list,
        args=[_parse_argument(a) for a in raw.get("args") or []],
        description=raw.get("description"),
    )


def parse_schema(endpoint: str, payload: dict[str, Any], *, full: bool = True) -> GraphQLSchemaInfo | None:
    """Turn an introspection response into a :class:`GraphQLSchemaInfo`."""
    schema = (payload.get("data") or {}).get("__schema")
    if not isinstance(schema, dict):
        return None

    types: dict[str, GraphQLType] = {}
    for raw in schema.get("types") or []:
        name = raw.get("name")
        if not name or name.startswith("__"):
            continue
        types[name] = GraphQLType(
            name=name,
            kind=raw.get("kind") or "OBJECT",
            fields=[_parse_field(f) for f in raw.get("fields") or []],
            input_fields=[_parse_argument(f) for f in raw.get("inputFields") or []],
        )

    query_type = (schema.get("queryType") or {}).get("name") or "Query"
    mutation_type = (schema.get("mutationType") or {}).get("name")
    queries = types[query_type].fields if query_type in types else []
    mutations = types[mutation_type].fields if mutation_type and mutation_type in types else []
    return GraphQLSchemaInfo(
        endpoint=endpoint,
        query_type=query_type,
        queries=queries,
        mutations=mutations,
        types=types,
        full=full,
    )


class GraphQLIntrospector:
    """Run the introspection protocol against a GraphQL endpoint."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def introspect(
        self,
        endpoint: str,
        profile: SiteProfile,
        target: ContentType = ContentType.UNKNOWN,
    ) -> GraphQLSchemaInfo | None:
        """Return the parsed schema with ranked candidates, or None when opaque."""
        headers = {**profile.required_headers, "Content-Type": "application/json"}
        for query, full in ((FULL_INTROSPECTION_QUERY, True), (LIGHT_INTROSPECTION_QUERY, False)):
            payload = await self._request(endpoint, query, headers)
            if payload is None:
                continue
            info = parse_schema(endpoint, payload, full=full)
            if info is None:
                continue
            if target == ContentType.UNKNOWN:
                target = profile.content_hint
            candidates = generate_queries(info, target)
            logger.info(
                "Introspected %s: %d type(s), %d query field(s), %d candidate(s)",
                endpoint, len(info.types), len(info.queries), len(candidates),
            )
            return info.model_copy(update={"candidates": candidates})
        logger.info("Introspection unavailable at %s", endpoint)
        return None

    async def _request(self, endpoint: str, query: str, headers: dict[str, str]) -> dict[str, Any] | None:
        try:
            resp = await self._client.post(endpoint, json={"query": query}, headers=headers)
            data = parse_json(resp.text)
            if data is None and resp.status_code in (400, 405):
                resp = await self._client.get(endpoint, params={"query": query}, headers=headers)
                data = parse_json(resp.text)
        except httpx.HTTPError:
            logger.warning("Introspection request to %s failed", endpoint, exc_info=True)
            return None
        if not isinstance(data, dict) or (data.get("errors") and not data.get("data")):
            return None
        return data


# ---------------------------------------------------------------------------
# Query generation
# ---------------------------------------------------------------------------


def _target_roles(target: ContentType) -> tuple[Role, ...]:
    if target == ContentType.ANIME:
        return ANIME_ROLES
    if target == ContentType.MANGA:
        return MANGA_ROLES
    return (*REQUIRED_ROLES, Role.IMAGE)


def _coverage(fields: dict[Role, FieldRole], target: ContentType) -> float:
    if target == ContentType.BOTH:
        return max(_coverage(fields, ContentType.ANIME), _coverage(fields, ContentType.MANGA))
    roles = _target_roles(target)
    return sum(1 for r in roles if r in fields) / len(roles)


def _name_match(words: list[str], target: ContentType) -> float:
    if target == ContentType.BOTH:
        terms = _TARGET_TERMS[ContentType.ANIME] + _TARGET_TERMS[ContentType.MANGA]
    else:
        terms = _TARGET_TERMS.get(target, _TARGET_TERMS[ContentType.ANIME] + _TARGET_TERMS[ContentType.MANGA])
    tokens = {t for w in words for t in tokenize(w)}
    return 1.0 if any(t.startswith(term) for t in tokens for term in terms) else 0.0


def _leaf_for_object(info: GraphQLSchemaInfo, type_name: str) -> str | None:
    gtype = info.types.get(type_name)
    if gtype is None:
        return None
    leaves = [f.name for f in gtype.fields if f.base_kind in _LEAF_KINDS and not f.is_list]
    for preferred in NESTED_PREFERENCE:
        if preferred in leaves:
            return preferred
    return leaves[0] if leaves else None


def type_roles(info: GraphQLSchemaInfo, type_name: str) -> dict[Role, FieldRole]:
    """Apply the name heuristics to an object type's fields."""
    gtype = info.types.get(type_name)
    if gtype is None:
        return {}
    roles: dict[Role, FieldRole] = {}
    for f in gtype.fields:
        role = role_for_key(f.name, is_list=f.is_list)
        if role is None or role in roles:
            continue
        path = f.name
        if f.base_kind == "OBJECT" and not f.is_list:
            if role not in (Role.IMAGE, Role.TITLE):
                continue
            leaf = _leaf_for_object(info, f.base_type)
            if leaf is None:
                continue
            path = f"{f.name}.{leaf}"
        elif f.is_list and f.base_kind != "OBJECT" and role != Role.PAGE_LIST:
            continue
        roles[role] = FieldRole(role=role, path=path, confidence=1.0, origin=f"{type_name}.{f.name}")
    return roles


def _selection(info: GraphQLSchemaInfo, type_name: str, roles: dict[Role, FieldRole]) -> str:
    """Leaf fields of a type, role fields first; object-valued roles get their leaf."""
    gtype = info.types.get(type_name)
    if gtype is None:
        return "__typename"
    parts: list[str] = []
    role_fields = {fr.path.split(".")[0] for fr in roles.values()}
    ordered = sorted(gtype.fields, key=lambda f: (f.name not in role_fields, gtype.fields.index(f)))
    for f in ordered:
        if len(parts) >= _MAX_SELECTION:
            break
        if f.args and any(a.type_name.endswith("!") for a in f.args):
            continue
        if f.base_kind in _LEAF_KINDS:
            parts.append(f.name)
        elif f.base_kind == "OBJECT" and f.name in role_fields and not f.is_list:
            leaf = _leaf_for_object(info, f.base_type)
            if leaf:
                parts.append(f"{f.name} {{ {leaf} }}")
    return " ".join(parts) or "__typename"


def _entity_of(info: GraphQLSchemaInfo, field: GraphQLField) -> tuple[str, str, int] | None:
    """Locate the entity type behind a root field: (type, path suffix, nesting)."""
    if field.base_kind != "OBJECT":
        return None
    gtype = info.types.get(field.base_type)
    if gtype is None:
        return None
    if field.is_list:
        return field.base_type, "", 0
    edges = gtype.field("edges")
    if edges is not None and edges.is_list:
        node_type = info.types.get(edges.base_type)
        node = node_type.field("node") if node_type else None
        if node is not None and node.base_kind == "OBJECT":
            return node.base_type, ".edges[*].node", 2
    for wrapper in ("nodes", "items", "results", "data", "media", "list"):
        inner = gtype.field(wrapper)
        if inner is not None and inner.is_list and inner.base_kind == "OBJECT":
            return inner.base_type, f".{wrapper}", 1
    return field.base_type, "", 0


def _variables_for(info: GraphQLSchemaInfo, arg: GraphQLArgument, placeholder: str) -> Any:
    if arg.base_kind == "INPUT_OBJECT":
        input_type = info.types.get(arg.base_type)
        if input_type is not None:
            for inner in input_type.input_fields:
                if inner.name.lower() in _SEARCH_ARGS and inner.base_kind == "SCALAR":
                    return {inner.name: placeholder}
    return placeholder


def _default_for(arg: GraphQLArgument) -> Any:
    name = arg.name.lower()
    if arg.base_type == "Int":
        return 1 if "page" in name else 20
    if arg.base_type == "Boolean":
        return False
    return None


def _document(field: GraphQLField, args: list[GraphQLArgument], body: str, wrap: str = "") -> str:
    if args:
        defs = ", ".join(f"${a.name}: {a.type_name}" for a in args)
        call = ", ".join(f"{a.name}: ${a.name}" for a in args)
        head = f"query ({defs}) {{ {field.name}({call})"
    else:
        head = f"query {{ {field.name}"
    inner = body
    if wrap == ".edges[*].node":
        inner = f"edges {{ node {{ {body} }} }}"
    elif wrap:
        inner = f"{wrap.lstrip('.')} {{ {body} }}"
    return f"{head} {{ {inner} }} }}"


def _bind_args(
    info: GraphQLSchemaInfo,
    field: GraphQLField,
    main: GraphQLArgument | None,
    placeholder: str,
) -> tuple[list[GraphQLArgument], dict[str, Any]] | None:
    used: list[GraphQLArgument] = []
    variables: dict[str, Any] = {}
    if main is not None:
        used.append(main)
        variables[main.name] = _variables_for(info, main, placeholder)
    for arg in field.args:
        if arg is main or not arg.type_name.endswith("!"):
            continue
        default = _default_for(arg)
        if default is None:
            return None
        used.append(arg)
        variables[arg.name] = default
    return used, variables


def generate_queries(info: GraphQLSchemaInfo, target: ContentType) -> list[CandidateQuery]:
    """Rank candidate queries for the target content type.

    Ranking favours a type-name match with the target terms, then field-role
    coverage, then shallower nesting. The result is sorted by descending
    confidence and holds one candidate per name.
    """
    by_name: dict[str, CandidateQuery] = {}

    def keep(candidate: CandidateQuery) -> None:
        current = by_name.get(candidate.name)
        if current is None or candidate.confidence > current.confidence:
            by_name[candidate.name] = candidate

    root = "$.data"
    for field in info.queries:
        located = _entity_of(info, field)
        if located is None:
            continue
        entity, suffix, nesting = located
        roles = type_roles(info, entity)
        if not any(r in roles for r in REQUIRED_ROLES):
            continue

        coverage = _coverage(roles, target)
        name_score = _name_match([field.name, entity], target)
        confidence = round(_W_NAME * name_score + _W_COVERAGE * coverage + _W_NESTING / (1 + nesting), 4)
        search_arg = next((a for a in field.args if a.name.lower() in _SEARCH_ARGS), None)
        id_arg = next(
            (a for a in field.args if a.name.lower() in _ID_ARGS or a.name.lower().endswith("id")),
            None,
        )
        results_path = f"{root}.{field.name}{suffix}"

        if search_arg is not None or "search" in tokenize(field.name):
            bound = _bind_args(info, field, search_arg, "{query}")
            if bound is not None:
                args, variables = bound
                keep(CandidateQuery(
                    name=field.name,
                    purpose=QueryPurpose.SEARCH,
                    confidence=confidence,
                    query=_document(field, args, _selection(info, entity, roles), suffix),
                    variables=variables,
                    entity_type=entity,
                    results_path=results_path,
                    fields=roles,
                ))
        elif id_arg is not None and not field.is_list and not suffix:
            keep(CandidateQuery(
                name=field.name,
                purpose=QueryPurpose.DETAILS,
                confidence=round(confidence * 0.9, 4),
                query=_document(field, [id_arg], _selection(info, entity, roles)),
                variables={id_arg.name: "{id}"},
                entity_type=entity,
                results_path=results_path,
                fields=roles,
            ))
        elif field.is_list or suffix:
            bound = _bind_args(info, field, None, "")
            if bound is not None:
                args, variables = bound
                keep(CandidateQuery(
                    name=field.name,
                    purpose=QueryPurpose.LIST,
                    confidence=round(confidence * 0.8, 4),
                    query=_document(field, args, _selection(info, entity, roles), suffix),
                    variables=variables,
                    entity_type=entity,
                    results_path=results_path,
                    fields=roles,
                ))

        for child in _child_candidates(info, field, entity, roles, id_arg, search_arg, suffix, confidence):
            keep(child)

    return sorted(by_name.values(), key=lambda c: (-c.confidence, c.name))


def _child_candidates(
    info: GraphQLSchemaInfo,
    field: GraphQLField,
    entity: str,
    roles: dict[Role, FieldRole],
    id_arg: GraphQLArgument | None,
    search_arg: GraphQLArgument | None,
    suffix: str,
    confidence: float,
) -> list[CandidateQuery]:
    """Queries that list an entity's episodes/chapters/pages or its media.

    With an id argument the child list is read from the entity fetched by
    id. Otherwise the search query is reused with the item's title and the
    first match's child list is taken.
    """
    out: list[CandidateQuery] = []
    if id_arg is not None and not field.is_list and not suffix:
        main, placeholder, item_path = id_arg, "{id}", f"$.data.{field.name}"
        factor = 0.85
    elif search_arg is not None:
        main, placeholder = search_arg, "{title}"
        item_path = f"$.data.{field.name}{suffix}"
        if "[*]" in item_path:
            item_path = item_path.replace("[*]", "[0]")
        elif field.is_list or suffix:
            item_path += "[0]"
        factor = 0.6
    else:
        return out

    for role in (Role.EPISODE_LIST, Role.CHAPTER_LIST, Role.PAGE_LIST):
        found = roles.get(role)
        if found is None:
            continue
        child_field = info.types[entity].field(found.path.split(".")[0]) if entity in info.types else None
        if child_field is None or not child_field.is_list:
            continue
        purpose = QueryPurpose.MEDIA if role == Role.PAGE_LIST else QueryPurpose.CHILDREN
        bound = _bind_args(info, field, main, placeholder)
        if bound is None:
            continue
        args, variables = bound
        if child_field.base_kind == "OBJECT":
            child_roles = type_roles(info, child_field.base_type)
            inner = f"{child_field.name} {{ {_selection(info, child_field.base_type, child_roles)} }}"
            child_type: str | None = child_field.base_type
        else:
            child_roles = {}
            inner = child_field.name
            child_type = None
        out.append(CandidateQuery(
            name=f"{field.name}.{child_field.name}",
            purpose=purpose,
            confidence=round(confidence * factor, 4),
            query=_document(field, args, inner, suffix),
            variables=variables,
            entity_type=child_type,
            results_path=f"{item_path}.{child_field.name}",
            fields=child_roles,
        ))
    return out
