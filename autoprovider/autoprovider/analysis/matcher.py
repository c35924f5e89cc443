"""Content pattern matcher — infer entity shapes from sample responses."""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import urlparse

from autoprovider.models import (
    ApiEndpoint,
    CandidateList,
    ContentSchema,
    EndpointPurpose,
    FieldRole,
    GraphQLSchemaInfo,
    QueryPurpose,
    Role,
    SiteProfile,
)
from autoprovider.provider_config import ApiType, ContentType
from autoprovider.utils import jsonpath
from autoprovider.utils.http import parse_json

logger = logging.getLogger(__name__)

MAX_DEPTH = 6
MAX_SAMPLED = 20

# Checked in order; a key takes the first role it matches. A trailing
# "*" matches any token starting with the keyword.
_SCALAR_ROLES: tuple[tuple[Role, tuple[str, ...]], ...] = (
    (Role.ID, ("id", "slug", "uuid", "hid")),
    (Role.TITLE, ("title*", "name", "romaji")),
    (Role.IMAGE, ("cover*", "image*", "img", "poster*", "thumb*", "banner*", "picture*", "artwork")),
    (Role.SYNOPSIS, ("description", "synopsis", "summary", "overview", "plot")),
    (Role.STREAM_URL, ("stream*", "source*", "m3u8", "hls", "embed*")),
    (Role.NUMBER, ("number", "num", "episode", "chapter", "ep")),
    (Role.DETAIL_PAGE, ("url", "link", "href", "permalink")),
)
_LIST_ROLES: tuple[tuple[Role, tuple[str, ...]], ...] = (
    (Role.EPISODE_LIST, ("episode*", "eps")),
    (Role.CHAPTER_LIST, ("chapter*",)),
    (Role.PAGE_LIST, ("page*", "images")),
)
# Preferred sub-keys when an image or title is an object, e.g. AniList's
# ``coverImage: {large, medium}`` or ``title: {english, romaji}``.
NESTED_PREFERENCE = ("large", "extraLarge", "url", "src", "original", "medium", "english", "userPreferred", "romaji", "en")

_ANIME_TERMS = ("anime", "episode", "stream", "watch", "season", "dub", "video")
_MANGA_TERMS = ("manga", "chapter", "page", "read", "volume", "scan", "comic")

_ENCODING_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("prefixed_hex", re.compile(r"\"-[a-fA-F0-9]{20,}\"")),
    ("hex", re.compile(r"\"[a-fA-F0-9]{32,}\"")),
    ("base64", re.compile(r"\"(?=[A-Za-z0-9+/]*[0-9+/])[A-Za-z0-9+/]{40,}={0,2}\"")),
)

_TOKEN_RE = re.compile(r"[A-Z]?[a-z]+|[0-9]+|[A-Z]+(?![a-z])")


def tokenize(key: str) -> list[str]:
    """Split ``coverImage`` / ``cover_image`` / ``COVER`` into lowercase words."""
    return [t.lower() for t in _TOKEN_RE.findall(key)]


def _matches(tokens: list[str], keywords: tuple[str, ...]) -> bool:
    for kw in keywords:
        if kw.endswith("*"):
            stem = kw[:-1]
            if any(t.startswith(stem) for t in tokens):
                return True
        elif kw in tokens:
            return True
    return False


def role_for_key(key: str, *, is_list: bool = False) -> Role | None:
    """Guess the logical role of a field from its name and whether it holds a list."""
    tokens = tokenize(key)
    if not tokens:
        return None
    table = _LIST_ROLES if is_list else _SCALAR_ROLES
    for role, keywords in table:
        if _matches(tokens, keywords):
            return role
    return None


def _is_exact(key: str, role: Role) -> bool:
    table = dict(_SCALAR_ROLES + _LIST_ROLES)
    return key.lower() in {kw.rstrip("*") for kw in table.get(role, ())}


def infer_roles(items: list[dict[str, Any]]) -> dict[Role, FieldRole]:
    """Infer field roles over a sample of structurally similar objects.

    Confidence is the fraction of sampled objects that carry the key.
    When several keys claim a role, an exact keyword match wins, then the
    higher confidence, then the key seen first.
    """
    sample = items[:MAX_SAMPLED]
    if not sample:
        return {}
    keys: list[str] = []
    for item in sample:
        for key in item:
            if key not in keys:
                keys.append(key)

    best: dict[Role, tuple[tuple[bool, float], FieldRole]] = {}
    for key in keys:
        values = [item[key] for item in sample if key in item]
        first = next((v for v in values if v is not None), None)
        role = role_for_key(key, is_list=isinstance(first, list))
        if role is None:
            continue
        path = key
        if isinstance(first, dict):
            if role not in (Role.IMAGE, Role.TITLE):
                continue
            nested = _pick_nested(first)
            if nested is None:
                continue
            path = f"{key}.{nested}"
        confidence = round(len(values) / len(sample), 4)
        rank = (_is_exact(key, role), confidence)
        current = best.get(role)
        if current is None or rank > current[0]:
            best[role] = (rank, FieldRole(role=role, path=path, confidence=confidence))
    return {role: entry[1] for role, entry in best.items()}


def _pick_nested(value: dict[str, Any]) -> str | None:
    for key in NESTED_PREFERENCE:
        if isinstance(value.get(key), str):
            return key
    for key, inner in value.items():
        if isinstance(inner, str):
            return key
    return None


def find_entity_lists(data: Any, max_depth: int = MAX_DEPTH) -> list[CandidateList]:
    """Depth-first search for repeating arrays of similar objects.

    An array qualifies when its sampled objects share at least two keys.
    Qualifying arrays are not searched further; their nested lists are
    child lists of the entity, not competing candidates.
    """
    found: list[CandidateList] = []
    _walk(data, "$", 0, max_depth, found)
    return found


def _walk(node: Any, path: str, depth: int, max_depth: int, found: list[CandidateList]) -> None:
    if depth > max_depth:
        return
    if isinstance(node, dict):
        for key, value in node.items():
            if isinstance(value, (dict, list)) and re.fullmatch(r"[A-Za-z_$@][\w\-$@]*", key):
                _walk(value, jsonpath.join(path, key), depth + 1, max_depth, found)
        return
    if not isinstance(node, list) or not node:
        return

    items, item_path = _unwrap_edges(node, path)
    if items is not None and _shared_keys(items) >= 2:
        found.append(
            CandidateList(path=item_path, depth=depth, size=len(items), fields=infer_roles(items))
        )
        return
    for index, value in enumerate(node[:MAX_SAMPLED]):
        if isinstance(value, (dict, list)):
            _walk(value, jsonpath.join(path, index), depth + 1, max_depth, found)


def _unwrap_edges(node: list[Any], path: str) -> tuple[list[dict[str, Any]] | None, str]:
    if not all(isinstance(v, dict) for v in node):
        return None, path
    if all(set(v) == {"node"} and isinstance(v["node"], dict) for v in node):
        return [v["node"] for v in node], jsonpath.join(path, "*", "node")
    return node, path


def _shared_keys(items: list[dict[str, Any]]) -> int:
    sample = items[:MAX_SAMPLED]
    shared = set(sample[0])
    for item in sample[1:]:
        shared &= set(item)
    return len(shared)


def detect_encodings(body: str | None) -> list[str]:
    """Name the value encodings that appear in a raw JSON body."""
    if not body:
        return []
    return [name for name, pattern in _ENCODING_PATTERNS if pattern.search(body)]


def content_type_from_terms(words: list[str], fallback: ContentType = ContentType.UNKNOWN) -> ContentType:
    text = " ".join(words).lower()
    anime = sum(1 for t in _ANIME_TERMS if t in text)
    manga = sum(1 for t in _MANGA_TERMS if t in text)
    if anime and manga and anime == manga:
        return ContentType.BOTH
    if anime > manga:
        return ContentType.ANIME
    if manga > anime:
        return ContentType.MANGA
    return fallback


class ContentPatternMatcher:
    """Pick the best entity list across accepted endpoints and map its fields."""

    def __init__(self, max_depth: int = MAX_DEPTH) -> None:
        self._max_depth = max_depth

    def match(self, profile: SiteProfile, endpoints: list[ApiEndpoint]) -> ContentSchema:
        best: tuple[tuple[int, int, int], CandidateList, ApiEndpoint] | None = None
        encodings: list[str] = []

        for order, endpoint in enumerate(endpoints):
            for name in detect_encodings(endpoint.sample_body):
                if name not in encodings:
                    encodings.append(name)
            if endpoint.purpose not in (EndpointPurpose.SEARCH, EndpointPurpose.DETAILS, EndpointPurpose.UNKNOWN):
                continue
            data = parse_json(endpoint.sample_body)
            if data is None:
                logger.debug("Skipping non-JSON sample from %s", endpoint.url)
                continue
            for candidate in find_entity_lists(data, self._max_depth):
                if not candidate.fields:
                    continue
                rank = (candidate.depth, -candidate.coverage, order)
                if best is None or rank < best[0]:
                    best = (rank, candidate, endpoint)

        children = [
            e for e in endpoints
            if e.purpose in (EndpointPurpose.EPISODES, EndpointPurpose.CHAPTERS, EndpointPurpose.STREAMS, EndpointPurpose.PAGES)
        ]
        if best is None:
            logger.info("No entity list found among %d endpoint(s)", len(endpoints))
            return ContentSchema(
                content_type=profile.content_hint,
                child_endpoints=children,
                encodings=encodings,
            )

        _, chosen, endpoint = best
        words = [f.path for f in chosen.fields.values()]
        words.append(urlparse(endpoint.url).path)
        content_type = self._content_type(chosen.fields, words, profile.content_hint)
        logger.info(
            "Entity list at %s from %s: roles=%s",
            chosen.path, endpoint.url, sorted(r.value for r in chosen.fields),
        )
        return ContentSchema(
            fields=chosen.fields,
            results_path=chosen.path,
            depth=chosen.depth,
            endpoint=endpoint,
            content_type=content_type,
            child_endpoints=children,
            encodings=encodings,
        )

    def refine_with_graphql(self, schema: ContentSchema, info: GraphQLSchemaInfo) -> ContentSchema:
        """Prefer the introspected shape of the best search query when there is one."""
        candidate = info.best(QueryPurpose.SEARCH) or info.best(QueryPurpose.LIST)
        if candidate is None or not candidate.fields:
            return schema.model_copy(update={"graphql": info})

        endpoint = schema.endpoint
        if endpoint is None or endpoint.api_type != ApiType.GRAPHQL:
            endpoint = ApiEndpoint(
                url=info.endpoint, method="POST", api_type=ApiType.GRAPHQL,
                purpose=EndpointPurpose.SEARCH, confidence=candidate.confidence,
            )
        words = [candidate.name, candidate.entity_type or ""] + [f.path for f in candidate.fields.values()]
        fallback = schema.content_type
        content_type = self._content_type(candidate.fields, words, fallback)
        return schema.model_copy(
            update={
                "fields": candidate.fields,
                "results_path": candidate.results_path,
                "depth": jsonpath.depth(candidate.results_path),
                "endpoint": endpoint,
                "content_type": content_type,
                "graphql": info,
            }
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _content_type(
        fields: dict[Role, FieldRole], words: list[str], hint: ContentType,
    ) -> ContentType:
        has_episodes = Role.EPISODE_LIST in fields
        has_chapters = Role.CHAPTER_LIST in fields or Role.PAGE_LIST in fields
        if has_episodes and has_chapters:
            return ContentType.BOTH
        if has_episodes:
            return ContentType.ANIME
        if has_chapters:
            return ContentType.MANGA
        return content_type_from_terms(words, hint)
