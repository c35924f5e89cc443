"""Completeness checks for inferred schemas and generated provider configs."""

from __future__ import annotations

from autoprovider.models import REQUIRED_ROLES, ContentSchema
from autoprovider.provider_config import ApiType, DynamicProviderConfig, EndpointConfig


class GenerationError(Exception):
    """Raised when a template cannot produce a complete config."""

    def __init__(self, template_id: str, missing: list[str]) -> None:
        self.template_id = template_id
        self.missing = missing
        super().__init__(
            f"{template_id} cannot generate a config, missing: {', '.join(missing)}"
        )


def _endpoint_missing(section: str, endpoint: EndpointConfig | None) -> list[str]:
    if endpoint is None:
        return [section]
    if endpoint.method == ApiType.GRAPHQL:
        if not (endpoint.query_template or "").strip():
            return [f"{section}.query"]
    elif not endpoint.path.strip():
        return [f"{section}.path"]
    return []


def _mapping_missing(section: str, endpoint: EndpointConfig | None, fields: list[str]) -> list[str]:
    if endpoint is None:
        return []
    missing: list[str] = []
    for name in fields:
        mapping = endpoint.mapping_for(name)
        if mapping is None or not mapping.source_path.strip():
            missing.append(f"{section}.{name}")
    return missing


def validate_search(config: DynamicProviderConfig) -> list[str]:
    """Validate the search section. Returns list of missing elements."""
    return _endpoint_missing("search", config.search) + _mapping_missing(
        "search", config.search, ["id", "title"]
    )


def validate_children(config: DynamicProviderConfig) -> list[str]:
    """Validate the child-list section (episodes or chapters). Returns list of missing elements."""
    missing = _endpoint_missing("children", config.children)
    if not missing and config.children is not None and not config.children.mappings:
        missing.append("children.mappings")
    return missing


def validate_all(config: DynamicProviderConfig) -> dict[str, list[str]]:
    """Validate every required section. Returns dict of section -> missing elements."""
    errors: dict[str, list[str]] = {}
    missing = validate_search(config)
    if missing:
        errors["search"] = missing
    missing = validate_children(config)
    if missing:
        errors["children"] = missing
    return errors


def require_complete(config: DynamicProviderConfig) -> None:
    """Raise :class:`GenerationError` unless every required section is present."""
    errors = validate_all(config)
    if errors:
        raise GenerationError(config.template_id, [m for found in errors.values() for m in found])


def require_roles(schema: ContentSchema, template_id: str) -> None:
    """Raise :class:`GenerationError` when a required role was never inferred."""
    missing = schema.missing(REQUIRED_ROLES)
    if missing:
        raise GenerationError(template_id, missing)
