"""GraphQL manga sites."""

from __future__ import annotations

from autoprovider.generator import build_graphql_config
from autoprovider.models import ContentSchema, SiteProfile
from autoprovider.provider_config import ContentType, DynamicProviderConfig
from autoprovider.templates.base import ProviderTemplate, graphql_score

TEMPLATE_ID = "graphql-manga"


def score(profile: SiteProfile, schema: ContentSchema) -> float:
    return graphql_score(profile, schema, ContentType.MANGA)


def apply(profile: SiteProfile, schema: ContentSchema, name: str) -> DynamicProviderConfig:
    return build_graphql_config(
        profile, schema, name, template_id=TEMPLATE_ID, content_type=ContentType.MANGA,
    )


TEMPLATE = ProviderTemplate(
    id=TEMPLATE_ID,
    name="GraphQL Manga",
    description="Search, chapter and page queries generated from an introspected GraphQL schema",
    content_types=ContentType.MANGA,
    score_fn=score,
    apply_fn=apply,
)
