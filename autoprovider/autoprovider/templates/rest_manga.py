"""REST manga sites (``/search``, ``/info``, ``/read``)."""

from __future__ import annotations

from autoprovider.generator import build_rest_config
from autoprovider.models import ContentSchema, SiteProfile
from autoprovider.provider_config import ContentType, DynamicProviderConfig
from autoprovider.templates.base import ProviderTemplate, rest_score

TEMPLATE_ID = "rest-manga"


def score(profile: SiteProfile, schema: ContentSchema) -> float:
    return rest_score(profile, schema, ContentType.MANGA)


def apply(profile: SiteProfile, schema: ContentSchema, name: str) -> DynamicProviderConfig:
    return build_rest_config(
        profile, schema, name, template_id=TEMPLATE_ID, content_type=ContentType.MANGA,
    )


TEMPLATE = ProviderTemplate(
    id=TEMPLATE_ID,
    name="REST Manga",
    description="JSON search endpoint with info and read endpoints for chapters and pages",
    content_types=ContentType.MANGA,
    score_fn=score,
    apply_fn=apply,
)
