"""Provider store — generated configs persisted as JSON files.

Layout::

    <home>/providers/<slug>.json   one DynamicProviderConfig per file
    <home>/active.json             {"anime": "<slug>", "manga": "<slug>"}
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from pydantic import ValidationError

from autoprovider.generator import slugify
from autoprovider.provider_config import ContentType, DynamicProviderConfig

logger = logging.getLogger(__name__)

_DEFAULT_DIRNAME = Path(".config") / "autoprovider"
_ACTIVE_FILENAME = "active.json"
_ACTIVE_KEYS = {ContentType.ANIME: "anime", ContentType.MANGA: "manga"}


class ProviderNotFoundError(LookupError):
    """No saved provider has the requested name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"provider not found: {name}")


def _expand_path(raw: str) -> Path:
    trimmed = raw.strip()
    if not trimmed:
        raise ValueError("empty path")
    return Path(trimmed).expanduser().resolve()


def resolve_store_dir(home: str | None = None) -> Path:
    """Store directory: explicit *home*, then ``AUTOPROVIDER_HOME``, then ``~/.config/autoprovider``."""
    explicit = (home or os.environ.get("AUTOPROVIDER_HOME", "")).strip()
    if explicit:
        return _expand_path(explicit)
    return Path.home() / _DEFAULT_DIRNAME


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class ProviderStore:
    """Load/save generated configs. Saves are serialized per provider name."""

    def __init__(self, root: Path | str | None = None) -> None:
        self.root = Path(root) if root is not None else resolve_store_dir()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @property
    def providers_dir(self) -> Path:
        return self.root / "providers"

    def _path(self, name: str) -> Path:
        slug = slugify(name)
        if not slug:
            raise ValueError(f"invalid provider name: {name!r}")
        return self.providers_dir / f"{slug}.json"

    @asynccontextmanager
    async def _serialized(self, name: str) -> AsyncIterator[None]:
        """Hold the per-name lock; it is dropped once nobody holds or waits on it."""
        key = slugify(name)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------

    def load(self, name: str) -> DynamicProviderConfig | None:
        path = self._path(name)
        if not path.is_file():
            return None
        try:
            return DynamicProviderConfig.from_json(path.read_text(encoding="utf-8"))
        except ValidationError:
            logger.warning("Ignoring unreadable provider file %s", path, exc_info=True)
            return None

    async def save(self, config: DynamicProviderConfig) -> Path:
        """Write *config*, replacing any existing file for the same name."""
        path = self._path(config.slug or config.name)
        async with self._serialized(config.slug or config.name):
            _atomic_write(path, config.to_json())
        logger.info("Saved provider '%s' to %s", config.name, path)
        return path

    def list_all(self) -> list[str]:
        if not self.providers_dir.is_dir():
            return []
        return sorted(p.stem for p in self.providers_dir.glob("*.json"))

    # ------------------------------------------------------------------
    # Extras
    # ------------------------------------------------------------------

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    async def delete(self, name: str) -> bool:
        path = self._path(name)
        async with self._serialized(name):
            if not path.is_file():
                return False
            path.unlink()
            active = self._read_active()
            remaining = {k: v for k, v in active.items() if v != path.stem}
            if remaining != active:
                _atomic_write(self.root / _ACTIVE_FILENAME, json.dumps(remaining, indent=2))
        logger.info("Deleted provider '%s'", name)
        return True

    def export(self, name: str) -> str:
        config = self.load(name)
        if config is None:
            raise ProviderNotFoundError(name)
        return config.to_json()

    async def import_json(self, text: str) -> DynamicProviderConfig:
        """Validate and save a config exported elsewhere."""
        config = DynamicProviderConfig.from_json(text)
        await self.save(config)
        return config

    def set_active(self, name: str, content_type: ContentType) -> None:
        config = self.load(name)
        if config is None:
            raise ProviderNotFoundError(name)
        active = self._read_active()
        for flag, key in _ACTIVE_KEYS.items():
            if content_type & flag:
                active[key] = config.slug
        _atomic_write(self.root / _ACTIVE_FILENAME, json.dumps(active, indent=2))

    def get_active(self, content_type: ContentType) -> DynamicProviderConfig | None:
        key = _ACTIVE_KEYS.get(content_type)
        if key is None:
            return None
        slug = self._read_active().get(key)
        return self.load(slug) if slug else None

    def _read_active(self) -> dict[str, str]:
        path = self.root / _ACTIVE_FILENAME
        if not path.is_file():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}
