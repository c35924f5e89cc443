"""GraphQL anime sites (AllAnime, AniList and similar)."""

from __future__ import annotations

from autoprovider.generator import build_graphql_config
from autoprovider.models import ContentSchema, SiteProfile
from autoprovider.provider_config import ContentType, DynamicProviderConfig
from autoprovider.templates.base import ProviderTemplate, graphql_score

TEMPLATE_ID = "graphql-anime"


def score(profile: SiteProfile, schema: ContentSchema) -> float:
    return graphql_score(profile, schema, ContentType.ANIME)


def apply(profile: SiteProfile, schema: ContentSchema, name: str) -> DynamicProviderConfig:
    return build_graphql_config(
        profile, schema, name, template_id=TEMPLATE_ID, content_type=ContentType.ANIME,
    )


TEMPLATE = ProviderTemplate(
    id=TEMPLATE_ID,
    name="GraphQL Anime",
    description="Search and episode queries generated from an introspected GraphQL schema",
    content_types=ContentType.ANIME,
    score_fn=score,
    apply_fn=apply,
)
