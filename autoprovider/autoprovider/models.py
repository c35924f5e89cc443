"""Core data models for autoprovider analysis runs."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from autoprovider.provider_config import ApiType, ContentType, DynamicProviderConfig

# Bodies larger than this are recorded without a sample.
MAX_SAMPLE_CHARS = 256_000


class SiteType(str, Enum):
    STATIC = "static"
    SPA = "spa"
    HYBRID = "hybrid"


class EndpointPurpose(str, Enum):
    SEARCH = "search"
    DETAILS = "details"
    EPISODES = "episodes"
    CHAPTERS = "chapters"
    STREAMS = "streams"
    PAGES = "pages"
    UNKNOWN = "unknown"


class Role(str, Enum):
    """Logical field of a catalog entity."""

    ID = "id"
    TITLE = "title"
    IMAGE = "image"
    SYNOPSIS = "synopsis"
    DETAIL_PAGE = "detail_page"
    NUMBER = "number"
    EPISODE_LIST = "episode_list"
    CHAPTER_LIST = "chapter_list"
    PAGE_LIST = "page_list"
    STREAM_URL = "stream_url"


REQUIRED_ROLES: tuple[Role, ...] = (Role.TITLE, Role.ID)
ANIME_ROLES: tuple[Role, ...] = (Role.ID, Role.TITLE, Role.IMAGE, Role.EPISODE_LIST)
MANGA_ROLES: tuple[Role, ...] = (Role.ID, Role.TITLE, Role.IMAGE, Role.CHAPTER_LIST)


class Architecture(str, Enum):
    GRAPHQL_KNOWN = "graphql-known"
    GRAPHQL_GENERIC = "graphql-generic"
    REST_KNOWN = "rest-known"
    REST_GENERIC = "rest-generic"
    UNKNOWN = "unknown"


class Stage(str, Enum):
    PROBE = "probe"
    DISCOVERY = "discovery"
    MATCHING = "matching"
    INTROSPECTION = "introspection"
    FINGERPRINT = "fingerprint"
    GENERATION = "generation"
    VALIDATION = "validation"
    STORAGE = "storage"
    COMPLETE = "complete"


# ---------------------------------------------------------------------------
# Probe / discovery
# ---------------------------------------------------------------------------


class ApiEndpoint(BaseModel, frozen=True):
    """An endpoint that was requested during analysis."""

    url: str
    method: str = "GET"
    status: int | None = None
    content_type: str | None = None
    sample_body: str | None = None
    api_type: ApiType | None = None
    purpose: EndpointPurpose = EndpointPurpose.UNKNOWN
    confidence: float = 0.0
    path_template: str | None = None  # REST path with a ``{query}`` placeholder

    @property
    def is_json(self) -> bool:
        return bool(self.content_type and "json" in self.content_type.lower())


class SiteProfile(BaseModel, frozen=True):
    """What the prober observed about a site."""

    base_url: str
    tags: frozenset[str] = frozenset()
    endpoints: list[ApiEndpoint] = Field(default_factory=list)
    required_headers: dict[str, str] = Field(default_factory=dict)
    title: str | None = None
    description: str | None = None
    site_type: SiteType = SiteType.STATIC
    content_hint: ContentType = ContentType.UNKNOWN
    api_hints: list[str] = Field(default_factory=list)
    cdn_hosts: list[str] = Field(default_factory=list)
    server: str | None = None
    powered_by: str | None = None

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags


# ---------------------------------------------------------------------------
# Content schema
# ---------------------------------------------------------------------------


class FieldRole(BaseModel, frozen=True):
    """Location of one logical field, relative to a result item."""

    role: Role
    path: str
    confidence: float
    origin: str | None = None  # e.g. "Show.name" for GraphQL-derived roles


class CandidateList(BaseModel, frozen=True):
    """A repeating array of structurally similar objects."""

    path: str
    depth: int
    size: int
    fields: dict[Role, FieldRole] = Field(default_factory=dict)

    @property
    def coverage(self) -> int:
        return len(self.fields)


class ContentSchema(BaseModel, frozen=True):
    """Inferred entity shape of a site's catalog responses."""

    fields: dict[Role, FieldRole] = Field(default_factory=dict)
    results_path: str | None = None
    depth: int | None = None
    endpoint: ApiEndpoint | None = None
    content_type: ContentType = ContentType.UNKNOWN
    child_endpoints: list[ApiEndpoint] = Field(default_factory=list)
    graphql: GraphQLSchemaInfo | None = None
    encodings: list[str] = Field(default_factory=list)

    def has(self, role: Role) -> bool:
        return role in self.fields

    def path(self, role: Role) -> str | None:
        found = self.fields.get(role)
        return found.path if found else None

    def coverage(self, roles: tuple[Role, ...]) -> float:
        if not roles:
            return 0.0
        return sum(1 for r in roles if r in self.fields) / len(roles)

    def missing(self, roles: tuple[Role, ...] = REQUIRED_ROLES) -> list[str]:
        return [r.value for r in roles if r not in self.fields]

    @property
    def api_type(self) -> ApiType | None:
        if self.graphql is not None:
            return ApiType.GRAPHQL
        return self.endpoint.api_type if self.endpoint else None


# ---------------------------------------------------------------------------
# GraphQL
# ---------------------------------------------------------------------------


class QueryPurpose(str, Enum):
    SEARCH = "search"
    DETAILS = "details"
    LIST = "list"
    CHILDREN = "children"
    MEDIA = "media"


class GraphQLArgument(BaseModel, frozen=True):
    name: str
    type_name: str
    base_type: str
    base_kind: str = "SCALAR"


class GraphQLField(BaseModel, frozen=True):
    name: str
    type_name: str  # display form, e.g. "[Show!]!"
    base_type: str
    base_kind: str = "SCALAR"
    is_list: bool = False
    args: list[GraphQLArgument] = Field(default_factory=list)
    description: str | None = None


class GraphQLType(BaseModel, frozen=True):
    name: str
    kind: str
    fields: list[GraphQLField] = Field(default_factory=list)
    input_fields: list[GraphQLArgument] = Field(default_factory=list)

    def field(self, name: str) -> GraphQLField | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


class CandidateQuery(BaseModel, frozen=True):
    """A generated query proposal for one target entity."""

    name: str
    purpose: QueryPurpose
    confidence: float
    query: str
    variables: dict[str, Any] = Field(default_factory=dict)
    entity_type: str | None = None
    results_path: str = "$"
    fields: dict[Role, FieldRole] = Field(default_factory=dict)


class GraphQLSchemaInfo(BaseModel, frozen=True):
    endpoint: str
    query_type: str = "Query"
    queries: list[GraphQLField] = Field(default_factory=list)
    mutations: list[GraphQLField] = Field(default_factory=list)
    types: dict[str, GraphQLType] = Field(default_factory=dict)
    candidates: list[CandidateQuery] = Field(default_factory=list)
    full: bool = True  # False when only the light fallback query answered

    def best(self, purpose: QueryPurpose) -> CandidateQuery | None:
        for candidate in self.candidates:
            if candidate.purpose == purpose:
                return candidate
        return None


# ---------------------------------------------------------------------------
# Fingerprint / results
# ---------------------------------------------------------------------------


class Fingerprint(BaseModel, frozen=True):
    architecture: Architecture = Architecture.UNKNOWN
    confidence: float = 0.0
    signatures: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    technologies: list[str] = Field(default_factory=list)
    hash: str = ""

    @property
    def is_graphql(self) -> bool:
        return self.architecture in (Architecture.GRAPHQL_KNOWN, Architecture.GRAPHQL_GENERIC)

    @property
    def is_rest(self) -> bool:
        return self.architecture in (Architecture.REST_KNOWN, Architecture.REST_GENERIC)


class Diagnostic(BaseModel, frozen=True):
    stage: Stage
    level: str  # "info" | "warning" | "error"
    message: str


class FieldCheck(BaseModel, frozen=True):
    field: str
    passed: bool
    message: str = ""
    sample: str | None = None


class ValidationCheck(BaseModel, frozen=True):
    name: str
    passed: bool
    critical: bool = False
    message: str = ""


class ValidationResult(BaseModel, frozen=True):
    passed: bool
    test_query: str | None = None
    result_count: int = 0
    field_checks: list[FieldCheck] = Field(default_factory=list)
    checks: list[ValidationCheck] = Field(default_factory=list)

    @property
    def field_failures(self) -> list[FieldCheck]:
        return [c for c in self.field_checks if not c.passed]


class AutoconfigOptions(BaseModel, frozen=True):
    """Options for a single analysis run. Every field is optional."""

    provider_name: str | None = None
    force_type: ContentType | None = None
    test_query: str | None = None
    skip_validation: bool = False
    dry_run: bool = False
    timeout: float = 60.0
    accept_partial: bool = False


class AutoconfigProgress(BaseModel, frozen=True):
    """One progress update, emitted as each stage starts and once at the end."""

    stage: Stage
    step: str
    percentage: int = 0
    succeeded: bool | None = None  # set only on the final update


class AutoconfigResult(BaseModel, frozen=True):
    success: bool
    config: DynamicProviderConfig | None = None
    fingerprint: Fingerprint = Field(default_factory=Fingerprint)
    template_id: str | None = None
    validation: ValidationResult | None = None
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    saved: bool = False
    timed_out: bool = False
    duration: float = 0.0

    def messages(self, stage: Stage) -> list[str]:
        return [d.message for d in self.diagnostics if d.stage == stage]


ContentSchema.model_rebuild()
