"""Fingerprint engine — classify a site's API architecture from all evidence."""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Any
from urllib.parse import urlparse

from autoprovider.analysis.signatures import SIGNATURES, ArchitectureSignature
from autoprovider.models import (
    REQUIRED_ROLES,
    Architecture,
    ContentSchema,
    Fingerprint,
    GraphQLSchemaInfo,
    SiteProfile,
    SiteType,
)
from autoprovider.provider_config import ApiType, ContentType
from autoprovider.utils.http import parse_json

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.6


def _endpoint_paths(profile: SiteProfile, schema: ContentSchema, graphql: GraphQLSchemaInfo | None) -> list[str]:
    urls = [e.url for e in profile.endpoints] + [e.url for e in schema.child_endpoints]
    if schema.endpoint is not None:
        urls.append(schema.endpoint.url)
    if graphql is not None:
        urls.append(graphql.endpoint)
    return [urlparse(u).path.lower() for u in urls]


def _collect_keys(node: Any, out: set[str], depth: int = 0) -> None:
    if depth > 4:
        return
    if isinstance(node, dict):
        for key, value in node.items():
            out.add(key)
            _collect_keys(value, out, depth + 1)
    elif isinstance(node, list):
        for value in node[:5]:
            _collect_keys(value, out, depth + 1)


def _shape_words(schema: ContentSchema, graphql: GraphQLSchemaInfo | None) -> set[str]:
    words: set[str] = set()
    if graphql is not None:
        words.update(q.name for q in graphql.queries)
        words.update(graphql.types)
        for gtype in graphql.types.values():
            words.update(f.name for f in gtype.fields)
    if schema.endpoint is not None:
        _collect_keys(parse_json(schema.endpoint.sample_body), words)
    return words


def _signature_score(
    signature: ArchitectureSignature,
    tags: frozenset[str],
    paths: list[str],
    words: set[str],
) -> float:
    if signature.criteria == 0:
        return 0.0
    hits = sum(1 for t in signature.tags if t in tags)
    hits += sum(1 for p in signature.paths if any(p.lower() in path for path in paths))
    hits += sum(1 for w in signature.shape if w in words)
    return hits / signature.criteria


def _graphql_confidence(profile: SiteProfile, schema: ContentSchema, graphql: GraphQLSchemaInfo | None) -> float:
    score = 0.0
    if profile.has_tag("graphql"):
        score += 0.3
    answered = [e for e in profile.endpoints if e.api_type == ApiType.GRAPHQL]
    if schema.endpoint is not None and schema.endpoint.api_type == ApiType.GRAPHQL:
        answered.append(schema.endpoint)
    if answered or graphql is not None:
        score += 0.3
    if graphql is not None:
        score += 0.4 if graphql.full and graphql.candidates else 0.2
    return min(score, 1.0)


def _answers_graphql_post(profile: SiteProfile, schema: ContentSchema) -> bool:
    """True when some GraphQL endpoint returned data for a plain POST query."""
    endpoints = [*profile.endpoints, *([schema.endpoint] if schema.endpoint is not None else [])]
    return any(
        e.api_type == ApiType.GRAPHQL and e.method.upper() == "POST" and e.status == 200 and e.is_json
        for e in endpoints
    )


def _rest_confidence(profile: SiteProfile, schema: ContentSchema) -> float:
    endpoint = schema.endpoint
    if endpoint is not None and endpoint.api_type == ApiType.REST and schema.fields:
        covered = schema.coverage(REQUIRED_ROLES)
        return round(min(1.0, endpoint.confidence * (0.6 + 0.4 * covered)), 4)
    if any(e.api_type == ApiType.REST for e in profile.endpoints):
        return 0.3
    return 0.0


def _normalize_path(path: str) -> str:
    return re.sub(r"\d+", "N", path)


class PatternEngine:
    """Match evidence against known-architecture signatures."""

    def __init__(self, signatures: tuple[ArchitectureSignature, ...] = SIGNATURES) -> None:
        self._signatures = signatures

    def analyze(
        self,
        profile: SiteProfile,
        schema: ContentSchema,
        graphql: GraphQLSchemaInfo | None = None,
    ) -> Fingerprint:
        graphql = graphql if graphql is not None else schema.graphql
        paths = _endpoint_paths(profile, schema, graphql)
        words = _shape_words(schema, graphql)
        gql_conf = _graphql_confidence(profile, schema, graphql)
        rest_conf = _rest_confidence(profile, schema)

        matched: list[tuple[float, ArchitectureSignature]] = []
        for signature in self._signatures:
            if signature.api_type == ApiType.GRAPHQL and graphql is None:
                continue
            if signature.api_type == ApiType.REST and rest_conf == 0.0:
                continue
            score = _signature_score(signature, profile.tags, paths, words)
            if score >= MATCH_THRESHOLD:
                matched.append((score, signature))

        # Stable sort keeps table order among equal scores.
        matched.sort(key=lambda pair: -pair[0])
        if matched:
            confidence, best = matched[0]
            architecture = Architecture.GRAPHQL_KNOWN if best.api_type == ApiType.GRAPHQL else Architecture.REST_KNOWN
        elif gql_conf == 0.0 and rest_conf == 0.0:
            architecture, confidence = Architecture.UNKNOWN, 0.0
        elif (
            graphql is None and gql_conf > 0.0 and rest_conf == 0.0 and _answers_graphql_post(profile, schema)
        ):
            # Opaque GraphQL that still answers POST queries: handle the endpoint like a plain REST one.
            architecture, confidence = Architecture.REST_GENERIC, round(gql_conf / 2, 4)
        elif gql_conf >= rest_conf:
            architecture, confidence = Architecture.GRAPHQL_GENERIC, gql_conf
        else:
            architecture, confidence = Architecture.REST_GENERIC, rest_conf

        technologies = sorted(profile.tags | {t for t in (profile.server, profile.powered_by) if t})
        fingerprint = Fingerprint(
            architecture=architecture,
            confidence=round(confidence, 4),
            signatures=[s.name for _, s in matched],
            recommendations=self._recommendations(profile, schema, graphql, [s for _, s in matched]),
            technologies=technologies,
            hash=self._hash(technologies, paths),
        )
        logger.info(
            "Fingerprint %s (%.2f) signatures=%s",
            fingerprint.architecture.value, fingerprint.confidence, fingerprint.signatures,
        )
        return fingerprint

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _recommendations(
        profile: SiteProfile,
        schema: ContentSchema,
        graphql: GraphQLSchemaInfo | None,
        matched: list[ArchitectureSignature],
    ) -> list[str]:
        notes: list[str] = []
        if matched:
            notes.append(f"Matches known architecture '{matched[0].name}'")
        if graphql is not None:
            if graphql.candidates:
                notes.append("GraphQL API detected; generated queries come from introspection")
            else:
                notes.append("GraphQL schema exposes no catalog-like query; consider a manual query")
        elif profile.has_tag("graphql"):
            notes.append("GraphQL endpoint present but introspection disabled; consider a manual query")
        if schema.encodings:
            notes.append(f"Encoded values detected ({', '.join(schema.encodings)}); a decode transform is attached")
        if profile.has_tag("cloudflare"):
            notes.append("Cloudflare protection detected; requests may need browser headers or cookies")
        if profile.site_type != SiteType.STATIC:
            notes.append("Client-rendered site; catalog data comes from API calls, not HTML")
        if schema.endpoint is None and graphql is None:
            notes.append("No API endpoints discovered; the site may require HTML scraping")
        if schema.content_type == ContentType.BOTH:
            notes.append("Site appears to serve both anime and manga")
        elif schema.content_type in (ContentType.ANIME, ContentType.MANGA):
            notes.append(f"Content looks like {schema.content_type.name.lower()}")
        return notes

    @staticmethod
    def _hash(technologies: list[str], paths: list[str]) -> str:
        material = "|".join(technologies + sorted({_normalize_path(p) for p in paths}))
        return hashlib.sha1(material.encode("utf-8")).hexdigest()[:12]


def analyze(
    profile: SiteProfile,
    schema: ContentSchema,
    graphql: GraphQLSchemaInfo | None = None,
) -> Fingerprint:
    """Fingerprint with the built-in signature table."""
    return PatternEngine().analyze(profile, schema, graphql)
