"""Known-architecture registry — evidence that identifies a family of sites."""

from __future__ import annotations

from dataclasses import dataclass

from autoprovider.provider_config import ApiType, ContentType


@dataclass(frozen=True)
class ArchitectureSignature:
    """Criteria for one known site architecture.

    Every tag, path fragment and shape word counts as one criterion; the
    fingerprint confidence is the fraction of criteria satisfied.
    """

    name: str
    api_type: ApiType
    content_type: ContentType
    tags: tuple[str, ...] = ()
    paths: tuple[str, ...] = ()  # fragments of an observed endpoint path
    shape: tuple[str, ...] = ()  # query/type names or response keys

    @property
    def criteria(self) -> int:
        return len(self.tags) + len(self.paths) + len(self.shape)


# --- GraphQL ---

_ALLANIME = ArchitectureSignature(
    name="allanime",
    api_type=ApiType.GRAPHQL,
    content_type=ContentType.ANIME,
    tags=("graphql",),
    paths=("/api",),
    shape=("shows", "availableEpisodesDetail", "episode"),
)

_ANILIST = ArchitectureSignature(
    name="anilist",
    api_type=ApiType.GRAPHQL,
    content_type=ContentType.BOTH,
    tags=("graphql",),
    shape=("Page", "Media", "coverImage"),
)

# --- REST ---

_MANGADEX = ArchitectureSignature(
    name="mangadex",
    api_type=ApiType.REST,
    content_type=ContentType.MANGA,
    paths=("/manga",),
    shape=("data", "relationships", "attributes"),
)

_CONSUMET = ArchitectureSignature(
    name="consumet",
    api_type=ApiType.REST,
    content_type=ContentType.BOTH,
    shape=("results", "hasNextPage", "currentPage"),
)

_JIKAN = ArchitectureSignature(
    name="jikan",
    api_type=ApiType.REST,
    content_type=ContentType.ANIME,
    paths=("/v4/",),
    shape=("data", "pagination", "mal_id"),
)

_WORDPRESS = ArchitectureSignature(
    name="wordpress",
    api_type=ApiType.REST,
    content_type=ContentType.BOTH,
    tags=("wordpress",),
    paths=("/wp-json",),
    shape=("rendered", "slug"),
)

# --- Registry ---

SIGNATURES: tuple[ArchitectureSignature, ...] = (
    _ALLANIME, _ANILIST, _MANGADEX, _CONSUMET, _JIKAN, _WORDPRESS,
)


def get_signature(name: str) -> ArchitectureSignature | None:
    """Look up a signature by name (case-insensitive)."""
    for signature in SIGNATURES:
        if signature.name == name.lower():
            return signature
    return None


def list_signatures() -> list[str]:
    """Return all registered signature names."""
    return [s.name for s in SIGNATURES]
