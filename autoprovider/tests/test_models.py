"""Tests for configuration and the provider config model."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from autoprovider.config import DEFAULT_USER_AGENT, Config
from autoprovider.models import AutoconfigResult, Diagnostic, FieldCheck, Stage, ValidationCheck, ValidationResult
from autoprovider.provider_config import ApiType, ContentType, DynamicProviderConfig, EndpointConfig


class TestConfig:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for var in ("TIMEOUT", "MAX_WORKERS", "USER_AGENT", "TEST_QUERY", "HOME"):
            monkeypatch.delenv(f"AUTOPROVIDER_{var}", raising=False)

        config = Config.from_env()
        assert config == Config()
        assert config.user_agent == DEFAULT_USER_AGENT
        assert config.home is None

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTOPROVIDER_TIMEOUT", "3.5")
        monkeypatch.setenv("AUTOPROVIDER_MAX_WORKERS", "0")
        monkeypatch.setenv("AUTOPROVIDER_TEST_QUERY", "bleach")
        monkeypatch.setenv("AUTOPROVIDER_HOME", "/srv/providers")

        config = Config.from_env()
        assert config.http_timeout == 3.5
        assert config.max_workers == 1
        assert config.test_query == "bleach"
        assert config.home == "/srv/providers"


class TestContentType:
    def test_flags(self) -> None:
        assert ContentType.BOTH & ContentType.ANIME
        assert ContentType.BOTH & ContentType.MANGA
        assert not ContentType.UNKNOWN


class TestDynamicProviderConfig:
    def test_json_round_trip(self, rest_config) -> None:
        text = rest_config.to_json()

        assert json.loads(text)["content_type"] == ContentType.ANIME.value
        assert DynamicProviderConfig.from_json(text) == rest_config

    def test_lookups(self, rest_config) -> None:
        assert rest_config.search.required_fields == ["id", "title"]
        assert rest_config.search.mapping_for("image").source_path == "thumb"
        assert rest_config.search.mapping_for("synopsis") is None
        assert rest_config.transform("absolute-url").base == "https://rest.test/"
        assert rest_config.transform("missing") is None

    def test_default_http_method_follows_api_type(self) -> None:
        assert EndpointConfig().verb == "GET"
        assert EndpointConfig(method=ApiType.GRAPHQL).verb == "POST"
        assert EndpointConfig(method=ApiType.GRAPHQL, http_method="get").verb == "GET"

    def test_frozen(self, rest_config) -> None:
        with pytest.raises(ValidationError):
            rest_config.name = "Other"

    def test_rejects_malformed_json(self) -> None:
        with pytest.raises(ValidationError):
            DynamicProviderConfig.from_json('{"name": "x"}')


class TestResults:
    def test_field_failures(self) -> None:
        result = ValidationResult(
            passed=False,
            field_checks=[
                FieldCheck(field="id", passed=True, sample="1"),
                FieldCheck(field="title", passed=False, message="empty on every sampled result"),
            ],
            checks=[ValidationCheck(name="search", passed=True, critical=True)],
        )
        assert [f.field for f in result.field_failures] == ["title"]

    def test_messages_by_stage(self) -> None:
        result = AutoconfigResult(
            success=False,
            diagnostics=[
                Diagnostic(stage=Stage.PROBE, level="info", message="a"),
                Diagnostic(stage=Stage.STORAGE, level="info", message="b"),
                Diagnostic(stage=Stage.PROBE, level="warning", message="c"),
            ],
        )
        assert result.messages(Stage.PROBE) == ["a", "c"]
        assert result.messages(Stage.VALIDATION) == []
