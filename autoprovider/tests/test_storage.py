"""Tests for the provider store."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from autoprovider.provider_config import ContentType
from autoprovider.storage import ProviderNotFoundError, ProviderStore, resolve_store_dir


@pytest.fixture
def store(tmp_path: Path) -> ProviderStore:
    return ProviderStore(tmp_path)


class TestResolveStoreDir:
    def test_explicit_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTOPROVIDER_HOME", "/elsewhere")
        assert resolve_store_dir(str(tmp_path)) == tmp_path.resolve()

    def test_env_var(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTOPROVIDER_HOME", str(tmp_path))
        assert resolve_store_dir() == tmp_path.resolve()

    def test_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("AUTOPROVIDER_HOME", raising=False)
        assert resolve_store_dir() == Path.home() / ".config" / "autoprovider"


class TestProviderStore:
    @pytest.mark.asyncio
    async def test_save_and_load(self, store, rest_config) -> None:
        path = await store.save(rest_config)

        assert path == store.root / "providers" / "rest-test.json"
        assert store.load("Rest Test") == rest_config
        assert store.load("rest-test") == rest_config
        assert store.exists("Rest Test")

    def test_load_missing(self, store) -> None:
        assert store.load("nothing") is None
        assert not store.exists("nothing")

    def test_load_corrupt_file(self, store) -> None:
        store.providers_dir.mkdir(parents=True)
        (store.providers_dir / "broken.json").write_text("{not json", encoding="utf-8")
        assert store.load("broken") is None

    def test_invalid_name(self, store) -> None:
        with pytest.raises(ValueError):
            store.load("!!!")

    @pytest.mark.asyncio
    async def test_save_replaces(self, store, rest_config) -> None:
        await store.save(rest_config)
        await store.save(rest_config.model_copy(update={"notes": ["second"]}))

        assert store.load("rest-test").notes == ["second"]
        assert store.list_all() == ["rest-test"]

    @pytest.mark.asyncio
    async def test_concurrent_saves_leave_a_valid_file(self, store, rest_config) -> None:
        versions = [rest_config.model_copy(update={"notes": [str(i)]}) for i in range(10)]
        await asyncio.gather(*(store.save(v) for v in versions))

        loaded = store.load("rest-test")
        assert loaded is not None
        assert loaded.notes[0] in {str(i) for i in range(10)}
        assert not list(store.providers_dir.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_locks_released_after_use(self, store, rest_config, graphql_config) -> None:
        await asyncio.gather(store.save(rest_config), store.save(rest_config), store.save(graphql_config))
        await store.delete("gql-test")

        assert store._locks == {}
        assert store._lock_users == {}

    @pytest.mark.asyncio
    async def test_list_all_sorted(self, store, rest_config, graphql_config) -> None:
        assert store.list_all() == []
        await store.save(rest_config)
        await store.save(graphql_config)
        assert store.list_all() == ["gql-test", "rest-test"]

    @pytest.mark.asyncio
    async def test_delete(self, store, rest_config) -> None:
        await store.save(rest_config)
        assert await store.delete("Rest Test")
        assert not store.exists("rest-test")
        assert not await store.delete("Rest Test")

    @pytest.mark.asyncio
    async def test_export_and_import(self, store, tmp_path: Path, rest_config) -> None:
        await store.save(rest_config)
        text = store.export("rest-test")
        assert json.loads(text)["slug"] == "rest-test"

        other = ProviderStore(tmp_path / "other")
        imported = await other.import_json(text)
        assert imported == rest_config
        assert other.list_all() == ["rest-test"]

    def test_export_missing(self, store) -> None:
        with pytest.raises(ProviderNotFoundError, match="nothing"):
            store.export("nothing")


class TestActiveProviders:
    @pytest.mark.asyncio
    async def test_set_and_get(self, store, rest_config) -> None:
        await store.save(rest_config)
        store.set_active("Rest Test", ContentType.ANIME)

        assert store.get_active(ContentType.ANIME) == rest_config
        assert store.get_active(ContentType.MANGA) is None

    @pytest.mark.asyncio
    async def test_both_sets_each_kind(self, store, rest_config) -> None:
        await store.save(rest_config)
        store.set_active("rest-test", ContentType.BOTH)

        active = json.loads((store.root / "active.json").read_text(encoding="utf-8"))
        assert active == {"anime": "rest-test", "manga": "rest-test"}

    def test_set_unknown(self, store) -> None:
        with pytest.raises(ProviderNotFoundError):
            store.set_active("nothing", ContentType.ANIME)

    @pytest.mark.asyncio
    async def test_delete_clears_active(self, store, rest_config) -> None:
        await store.save(rest_config)
        store.set_active("rest-test", ContentType.ANIME)
        await store.delete("rest-test")

        assert store.get_active(ContentType.ANIME) is None
        assert json.loads((store.root / "active.json").read_text(encoding="utf-8")) == {}
