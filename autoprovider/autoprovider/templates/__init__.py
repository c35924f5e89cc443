"""Template library — the fixed set of configuration strategies."""

from __future__ import annotations

import importlib
import logging

from autoprovider.generator import GENERIC_ID
from autoprovider.models import ContentSchema, SiteProfile
from autoprovider.provider_config import ContentType
from autoprovider.templates.base import ProviderTemplate

logger = logging.getLogger(__name__)

# Most specific first; ties go to the earlier entry.
_TEMPLATE_MODULES = [
    "autoprovider.templates.graphql_anime",
    "autoprovider.templates.graphql_manga",
    "autoprovider.templates.rest_anime",
    "autoprovider.templates.rest_manga",
    "autoprovider.templates.generic",  # catch-all, must be last
]


def build_library() -> TemplateLibrary:
    """Import every template module and collect its ``TEMPLATE``."""
    templates = [importlib.import_module(path).TEMPLATE for path in _TEMPLATE_MODULES]
    return TemplateLibrary(templates)


class TemplateLibrary:
    """Read-only registry; safe to share between concurrent analysis runs."""

    def __init__(self, templates: list[ProviderTemplate]) -> None:
        if not templates or templates[-1].id != GENERIC_ID:
            raise ValueError("the generic template must be registered last")
        ids = [t.id for t in templates]
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate template ids: {ids}")
        self._templates = tuple(templates)

    def get_all(self) -> list[ProviderTemplate]:
        return list(self._templates)

    def get_by_id(self, template_id: str) -> ProviderTemplate | None:
        for template in self._templates:
            if template.id == template_id:
                return template
        return None

    def rank(
        self,
        profile: SiteProfile,
        schema: ContentSchema,
        content_type: ContentType | None = None,
    ) -> list[tuple[ProviderTemplate, float]]:
        """Every eligible template with its score, best first.

        A forced content type drops templates that cannot serve it; the
        generic template is always kept.
        """
        scored = [
            (template, template.score(profile, schema))
            for template in self._templates
            if content_type is None or template.id == GENERIC_ID or template.supports(content_type)
        ]
        # sort() is stable, so equal scores keep registration order.
        scored.sort(key=lambda pair: -pair[1])
        logger.debug("Template scores: %s", [(t.id, s) for t, s in scored])
        return scored

    def find_best_match(
        self,
        profile: SiteProfile,
        schema: ContentSchema,
        content_type: ContentType | None = None,
    ) -> ProviderTemplate:
        return self.rank(profile, schema, content_type)[0][0]
