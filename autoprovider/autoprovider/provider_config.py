"""The generated provider configuration.

A ``DynamicProviderConfig`` is the only long-lived artifact of an analysis
run. It is persisted by the provider store as JSON and interpreted at run
time by :class:`autoprovider.runtime.engine.TransformEngine`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum, IntFlag
from typing import Any

from pydantic import BaseModel, Field


class ContentType(IntFlag):
    """Catalog content a provider serves (bit-flags)."""

    UNKNOWN = 0
    ANIME = 1
    MANGA = 2
    BOTH = ANIME | MANGA


class ApiType(str, Enum):
    REST = "rest"
    GRAPHQL = "graphql"


class TransformKind(str, Enum):
    DECODE_BASE64 = "decode_base64"
    DECODE_HEX = "decode_hex"
    DECODE_PREFIXED_HEX = "decode_prefixed_hex"
    URL_DECODE = "url_decode"
    REPLACE = "replace"
    REGEX_EXTRACT = "regex_extract"
    URL_JOIN = "url_join"
    STRIP = "strip"


class TransformRule(BaseModel, frozen=True):
    """A named, literal transformation step attached to field mappings."""

    name: str
    kind: TransformKind
    pattern: str | None = None  # regex for regex_extract, needle for replace
    replacement: str | None = None
    base: str | None = None  # base URL for url_join


class FieldMapping(BaseModel, frozen=True):
    """Where a logical field lives inside one result item."""

    source_path: str
    target_field: str
    required: bool = False
    transforms: list[str] = Field(default_factory=list)


class EndpointConfig(BaseModel, frozen=True):
    """How to build one request and where its items live in the response.

    For REST endpoints ``path`` may contain ``{name}`` placeholders that are
    filled from the operation parameters. For GraphQL endpoints
    ``query_template`` is the query document and placeholders are only
    substituted inside ``variables`` values.
    """

    method: ApiType = ApiType.REST
    http_method: str | None = None  # GET for REST, POST for GraphQL when unset
    path: str = ""
    query_template: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
    results_path: str = "$"
    mappings: list[FieldMapping] = Field(default_factory=list)
    entity_type: str | None = None

    def mapping_for(self, target_field: str) -> FieldMapping | None:
        for mapping in self.mappings:
            if mapping.target_field == target_field:
                return mapping
        return None

    @property
    def verb(self) -> str:
        if self.http_method:
            return self.http_method.upper()
        return "POST" if self.method == ApiType.GRAPHQL else "GET"

    @property
    def required_fields(self) -> list[str]:
        return [m.target_field for m in self.mappings if m.required]


class HostConfig(BaseModel, frozen=True):
    base_url: str
    api_base: str | None = None
    referer: str | None = None
    user_agent: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)


class DynamicProviderConfig(BaseModel, frozen=True):
    """Everything a generic catalog needs to query one site."""

    name: str
    slug: str
    content_type: ContentType
    template_id: str
    version: str = "1.0.0"
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_validated_at: datetime | None = None
    incomplete: bool = False
    hosts: HostConfig
    search: EndpointConfig
    details: EndpointConfig | None = None
    children: EndpointConfig | None = None
    media: EndpointConfig | None = None
    browse: EndpointConfig | None = None
    transforms: list[TransformRule] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)

    def transform(self, name: str) -> TransformRule | None:
        for rule in self.transforms:
            if rule.name == name:
                return rule
        return None

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    @classmethod
    def from_json(cls, text: str) -> DynamicProviderConfig:
        return cls.model_validate_json(text)
