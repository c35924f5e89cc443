"""Generic fallback: matches every site with a low score."""

from __future__ import annotations

from autoprovider.generator import GENERIC_ID, SchemaGenerator
from autoprovider.models import ContentSchema, SiteProfile
from autoprovider.provider_config import ContentType, DynamicProviderConfig
from autoprovider.templates.base import GENERIC_SCORE, ProviderTemplate

_GENERATOR = SchemaGenerator()


def score(profile: SiteProfile, schema: ContentSchema) -> float:
    return GENERIC_SCORE


def apply(profile: SiteProfile, schema: ContentSchema, name: str) -> DynamicProviderConfig:
    return _GENERATOR.generate(profile, schema, name, template_id=GENERIC_ID)


TEMPLATE = ProviderTemplate(
    id=GENERIC_ID,
    name="Generic",
    description="Maps discovered fields directly onto a config, whatever the architecture",
    content_types=ContentType.BOTH,
    score_fn=score,
    apply_fn=apply,
)
