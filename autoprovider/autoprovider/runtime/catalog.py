"""Expose a generated config through the catalog operations."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Final

from autoprovider.provider_config import ContentType, DynamicProviderConfig
from autoprovider.runtime.engine import Operation, TransformEngine

logger = logging.getLogger(__name__)


class _Unsupported:
    """Marker returned for capabilities a config does not provide."""

    _instance: _Unsupported | None = None

    def __new__(cls) -> _Unsupported:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSUPPORTED"


UNSUPPORTED: Final = _Unsupported()

Capability = Callable[..., Awaitable[list[dict[str, Any]]]]


def child_params(item: dict[str, Any]) -> dict[str, Any]:
    return {k: item.get(k) for k in ("id", "title", "url", "number") if item.get(k) is not None}


class DynamicCatalog:
    """Anime or manga catalog backed entirely by the transform engine.

    ``search``, ``list_children`` and ``resolve_leaf`` raise the engine's
    typed errors; optional operations are reached through :meth:`capability`.
    """

    def __init__(self, config: DynamicProviderConfig, engine: TransformEngine) -> None:
        self.config = config
        self._engine = engine

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def content_type(self) -> ContentType:
        return self.config.content_type

    async def search(self, query: str) -> list[dict[str, Any]]:
        return await self._run(Operation.SEARCH, {"query": query, "title": query})

    async def list_children(self, item: dict[str, Any]) -> list[dict[str, Any]]:
        """Episodes or chapters of a search result."""
        return await self._run(Operation.LIST_CHILDREN, child_params(item))

    async def resolve_leaf(self, child: dict[str, Any]) -> list[dict[str, Any]]:
        """Stream URLs of an episode, or page images of a chapter."""
        return await self._run(Operation.RESOLVE_LEAF, child_params(child))

    def capability(self, name: str) -> Capability | _Unsupported:
        if name == "browse" and self.config.browse is not None:
            return self._browse
        if name == "details" and self.config.details is not None:
            return self._details
        return UNSUPPORTED

    async def _browse(self, page: int = 1) -> list[dict[str, Any]]:
        return await self._run(Operation.BROWSE, {"page": page})

    async def _details(self, item: dict[str, Any]) -> list[dict[str, Any]]:
        return await self._run(Operation.DETAILS, child_params(item))

    async def _run(self, operation: Operation, params: dict[str, Any]) -> list[dict[str, Any]]:
        result = await self._engine.execute(self.config, operation, params)
        result.raise_for_error()
        return result.items
