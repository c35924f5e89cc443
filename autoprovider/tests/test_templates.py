"""Tests for the template library and the individual templates."""

from __future__ import annotations

import pytest

from autoprovider.generator import GENERIC_ID
from autoprovider.models import ContentSchema, FieldRole, QueryPurpose, Role, SiteProfile
from autoprovider.provider_config import ApiType, ContentType
from autoprovider.schemas import GenerationError
from autoprovider.templates import TemplateLibrary, build_library
from autoprovider.templates.base import GENERIC_SCORE


@pytest.fixture
def library() -> TemplateLibrary:
    return build_library()


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestLibrary:
    def test_registration_order(self, library) -> None:
        assert [t.id for t in library.get_all()] == [
            "graphql-anime",
            "graphql-manga",
            "rest-anime",
            "rest-manga",
            GENERIC_ID,
        ]

    def test_get_by_id(self, library) -> None:
        assert library.get_by_id("rest-manga").name == "REST Manga"
        assert library.get_by_id("missing") is None

    def test_generic_must_be_last(self, library) -> None:
        templates = library.get_all()
        with pytest.raises(ValueError, match="last"):
            TemplateLibrary([templates[-1], *templates[:-1]])

    def test_duplicate_ids_rejected(self, library) -> None:
        templates = library.get_all()
        with pytest.raises(ValueError, match="duplicate"):
            TemplateLibrary([templates[0], templates[0], templates[-1]])

    def test_supports(self, library) -> None:
        assert library.get_by_id("graphql-anime").supports(ContentType.ANIME)
        assert not library.get_by_id("graphql-anime").supports(ContentType.MANGA)
        assert library.get_by_id(GENERIC_ID).supports(ContentType.MANGA)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class TestScoring:
    def test_graphql_site(self, library, graphql_profile, graphql_schema) -> None:
        scores = {t.id: s for t, s in library.rank(graphql_profile, graphql_schema)}

        assert library.find_best_match(graphql_profile, graphql_schema).id == "graphql-anime"
        assert scores["graphql-anime"] == 100.0
        assert scores["graphql-manga"] == 72.5
        assert scores["rest-anime"] == 0.0
        assert scores[GENERIC_ID] == GENERIC_SCORE

    def test_rest_site(self, library, rest_profile, rest_schema) -> None:
        ranked = library.rank(rest_profile, rest_schema)
        best, best_score = ranked[0]

        # Content type is unknown, so both REST templates tie and registration order decides.
        assert best.id == "rest-anime"
        assert best_score == 77.5
        assert dict((t.id, s) for t, s in ranked)["graphql-anime"] == 0.0

    def test_generic_never_beats_specialized_on_their_evidence(self, library, graphql_profile, graphql_schema, rest_profile, rest_schema) -> None:
        generic = library.get_by_id(GENERIC_ID)
        assert library.get_by_id("graphql-anime").score(graphql_profile, graphql_schema) > generic.score(graphql_profile, graphql_schema)
        assert library.get_by_id("rest-anime").score(rest_profile, rest_schema) > generic.score(rest_profile, rest_schema)

    def test_empty_evidence_ranks_generic_first(self, library) -> None:
        ranked = library.rank(SiteProfile(base_url="https://x.test"), ContentSchema())
        assert ranked[0][0].id == GENERIC_ID
        assert ranked[0][1] == GENERIC_SCORE

    def test_scores_are_pure(self, library, graphql_profile, graphql_schema) -> None:
        first = [s for _, s in library.rank(graphql_profile, graphql_schema)]
        second = [s for _, s in library.rank(graphql_profile, graphql_schema)]
        assert first == second

    def test_scores_clamped(self, library, rest_profile, rest_schema) -> None:
        for template, score in library.rank(rest_profile, rest_schema):
            assert 0.0 <= score <= 100.0, template.id

    def test_forced_type_filters_templates(self, library, graphql_profile, graphql_schema) -> None:
        ids = [t.id for t, _ in library.rank(graphql_profile, graphql_schema, ContentType.MANGA)]
        assert ids == ["graphql-manga", GENERIC_ID, "rest-manga"]
        assert library.find_best_match(graphql_profile, graphql_schema, ContentType.MANGA).id == "graphql-manga"

    def test_manga_terms_favour_manga_templates(self, library, rest_profile, rest_schema) -> None:
        schema = rest_schema.model_copy(update={"content_type": ContentType.MANGA})
        assert library.find_best_match(rest_profile, schema).id == "rest-manga"


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------


class TestApply:
    def test_graphql_anime_config(self, library, graphql_profile, graphql_schema) -> None:
        config = library.get_by_id("graphql-anime").apply(graphql_profile, graphql_schema, "AniTest")

        assert config.template_id == "graphql-anime"
        assert config.content_type == ContentType.ANIME
        assert config.search.method == ApiType.GRAPHQL
        assert config.search.http_method == "POST"
        assert config.search.path == "/graphql"
        assert config.search.mapping_for("title").source_path == "name"
        assert config.search.mapping_for("title").required
        assert config.children.results_path == "$.data.Page[0].episodes"
        assert config.children.variables == {"search": "{title}"}
        assert config.hosts.api_base is None

    def test_rest_anime_config(self, library, rest_profile, rest_schema) -> None:
        config = library.get_by_id("rest-anime").apply(rest_profile, rest_schema, "Rest Test")

        assert config.slug == "rest-test"
        assert config.search.path == "/api/search?q={query}"
        assert config.search.results_path == "$.results"
        assert config.search.mapping_for("image").transforms == ["absolute-url"]
        assert config.children.path == "/api/info/{id}"
        assert config.media.path == "/api/watch/{id}"

    def test_rest_manga_config(self, library, rest_profile, rest_schema) -> None:
        config = library.get_by_id("rest-manga").apply(rest_profile, rest_schema, "Rest Test")

        assert config.content_type == ContentType.MANGA
        assert config.children.results_path == "$.chapters"
        assert config.media.path == "/api/read/{id}"
        assert config.media.mapping_for("url").source_path == "img"

    def test_generic_follows_the_evidence(self, library, graphql_profile, graphql_schema, rest_profile, rest_schema) -> None:
        generic = library.get_by_id(GENERIC_ID)
        assert generic.apply(graphql_profile, graphql_schema, "G").search.method == ApiType.GRAPHQL
        assert generic.apply(rest_profile, rest_schema, "R").search.method == ApiType.REST

    def test_missing_title_fails_every_template(self, library, rest_profile, rest_schema) -> None:
        schema = rest_schema.model_copy(
            update={"fields": {Role.ID: FieldRole(role=Role.ID, path="id", confidence=1.0)}}
        )
        for template in library.get_all():
            with pytest.raises(GenerationError) as exc_info:
                template.apply(rest_profile, schema, "X")
            assert "title" in exc_info.value.missing, template.id

    def test_graphql_without_child_query_fails(self, library, graphql_profile, graphql_schema) -> None:
        info = graphql_schema.graphql
        trimmed = info.model_copy(
            update={"candidates": [c for c in info.candidates if c.purpose != QueryPurpose.CHILDREN]}
        )
        schema = graphql_schema.model_copy(update={"graphql": trimmed})
        with pytest.raises(GenerationError) as exc_info:
            library.get_by_id("graphql-anime").apply(graphql_profile, schema, "X")
        assert exc_info.value.missing == ["children"]

    def test_rest_template_rejects_graphql_evidence(self, library, graphql_profile, graphql_schema) -> None:
        with pytest.raises(GenerationError):
            library.get_by_id("rest-anime").apply(graphql_profile, graphql_schema, "X")
