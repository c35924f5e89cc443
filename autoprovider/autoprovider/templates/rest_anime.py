"""REST anime sites (Consumet-style ``/search``, ``/info``, ``/watch``)."""

from __future__ import annotations

from autoprovider.generator import build_rest_config
from autoprovider.models import ContentSchema, SiteProfile
from autoprovider.provider_config import ContentType, DynamicProviderConfig
from autoprovider.templates.base import ProviderTemplate, rest_score

TEMPLATE_ID = "rest-anime"


def score(profile: SiteProfile, schema: ContentSchema) -> float:
    return rest_score(profile, schema, ContentType.ANIME)


def apply(profile: SiteProfile, schema: ContentSchema, name: str) -> DynamicProviderConfig:
    return build_rest_config(
        profile, schema, name, template_id=TEMPLATE_ID, content_type=ContentType.ANIME,
    )


TEMPLATE = ProviderTemplate(
    id=TEMPLATE_ID,
    name="REST Anime",
    description="JSON search endpoint with info and watch endpoints for episodes and streams",
    content_types=ContentType.ANIME,
    score_fn=score,
    apply_fn=apply,
)
