"""A template is a scoring function paired with an apply function."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from autoprovider.analysis.fingerprint import analyze
from autoprovider.analysis.matcher import content_type_from_terms
from autoprovider.models import (
    ANIME_ROLES,
    MANGA_ROLES,
    Architecture,
    ContentSchema,
    QueryPurpose,
    Role,
    SiteProfile,
)
from autoprovider.provider_config import ApiType, ContentType, DynamicProviderConfig
from autoprovider.schemas import require_complete

ScoreFn = Callable[[SiteProfile, ContentSchema], float]
ApplyFn = Callable[[SiteProfile, ContentSchema, str], DynamicProviderConfig]

# Generic scores this for every input; specialized templates exceed it
# whenever their own signals are present.
GENERIC_SCORE = 5.0


@dataclass(frozen=True)
class ProviderTemplate:
    """One configuration strategy. Both functions are pure."""

    id: str
    name: str
    description: str
    content_types: ContentType
    score_fn: ScoreFn
    apply_fn: ApplyFn

    def score(self, profile: SiteProfile, schema: ContentSchema) -> float:
        return max(0.0, min(100.0, round(self.score_fn(profile, schema), 2)))

    def apply(self, profile: SiteProfile, schema: ContentSchema, name: str) -> DynamicProviderConfig:
        """Build the config, raising ``GenerationError`` instead of returning a partial one."""
        config = self.apply_fn(profile, schema, name)
        require_complete(config)
        return config

    def supports(self, content_type: ContentType) -> bool:
        return bool(self.content_types & content_type)


# ---------------------------------------------------------------------------
# Shared scoring signals
# ---------------------------------------------------------------------------


def _roles_for(target: ContentType) -> tuple[Role, ...]:
    return MANGA_ROLES if target == ContentType.MANGA else ANIME_ROLES


def term_signal(profile: SiteProfile, schema: ContentSchema, target: ContentType) -> float:
    """How strongly the evidence points at *target* content."""
    detected = schema.content_type
    if detected == ContentType.UNKNOWN:
        detected = profile.content_hint
    if detected == ContentType.UNKNOWN:
        words = [f.path for f in schema.fields.values()]
        if schema.graphql is not None:
            words.extend(c.name for c in schema.graphql.candidates)
        detected = content_type_from_terms(words)
    if detected == target:
        return 1.0
    if detected == ContentType.BOTH:
        return 0.75
    if detected == ContentType.UNKNOWN:
        return 0.5
    return 0.0


def graphql_score(profile: SiteProfile, schema: ContentSchema, target: ContentType) -> float:
    info = schema.graphql
    if info is None and not profile.has_tag("graphql"):
        return 0.0
    score = 0.0
    if info is not None and (info.best(QueryPurpose.SEARCH) or info.best(QueryPurpose.LIST)):
        score += 30
    else:
        score += 10
    fingerprint = analyze(profile, schema, info)
    if fingerprint.architecture == Architecture.GRAPHQL_KNOWN:
        score += 20
    elif fingerprint.architecture == Architecture.GRAPHQL_GENERIC:
        score += 15
    score += 30 * schema.coverage(_roles_for(target))
    score += 20 * term_signal(profile, schema, target)
    return score


def rest_score(profile: SiteProfile, schema: ContentSchema, target: ContentType) -> float:
    endpoint = schema.endpoint
    if endpoint is None or endpoint.api_type != ApiType.REST or schema.graphql is not None:
        return 0.0
    score = 30.0
    fingerprint = analyze(profile, schema)
    if fingerprint.architecture == Architecture.REST_KNOWN:
        score += 20
    elif fingerprint.architecture == Architecture.REST_GENERIC:
        score += 15
    if profile.has_tag("graphql"):
        score -= 10
    score += 30 * schema.coverage(_roles_for(target))
    score += 20 * term_signal(profile, schema, target)
    return score
