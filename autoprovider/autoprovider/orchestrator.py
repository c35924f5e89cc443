"""Autoconfig orchestrator — run the analysis pipeline end to end.

Stages run strictly in order: probe, discovery, matching, introspection,
fingerprint, generation, validation, storage. A single timeout covers the
whole run; when it fires, whatever was produced so far is returned with a
``timed out`` diagnostic.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

from autoprovider.analysis.discovery import EndpointDiscoverer
from autoprovider.analysis.fingerprint import PatternEngine
from autoprovider.analysis.introspector import GraphQLIntrospector
from autoprovider.analysis.matcher import ContentPatternMatcher
from autoprovider.analysis.prober import ProbeError, SiteProber, normalize_base_url
from autoprovider.config import Config
from autoprovider.generator import GENERIC_ID, SchemaGenerator, provider_name
from autoprovider.models import (
    ApiEndpoint,
    AutoconfigOptions,
    AutoconfigProgress,
    AutoconfigResult,
    ContentSchema,
    Diagnostic,
    Fingerprint,
    SiteProfile,
    Stage,
    ValidationResult,
)
from autoprovider.provider_config import ApiType, DynamicProviderConfig
from autoprovider.runtime.engine import TransformEngine
from autoprovider.schemas import GenerationError
from autoprovider.storage import ProviderStore
from autoprovider.templates import TemplateLibrary, build_library
from autoprovider.utils.http import build_client
from autoprovider.validation import ConfigValidator

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[AutoconfigProgress], None]

_PERCENTAGES = {
    Stage.PROBE: 10,
    Stage.DISCOVERY: 25,
    Stage.MATCHING: 40,
    Stage.INTROSPECTION: 50,
    Stage.FINGERPRINT: 60,
    Stage.GENERATION: 70,
    Stage.VALIDATION: 85,
    Stage.STORAGE: 95,
    Stage.COMPLETE: 100,
}


@dataclass
class _Run:
    """Everything one run has produced so far."""

    stage: Stage = Stage.PROBE
    diagnostics: list[Diagnostic] = field(default_factory=list)
    profile: SiteProfile | None = None
    schema: ContentSchema | None = None
    fingerprint: Fingerprint = field(default_factory=Fingerprint)
    config: DynamicProviderConfig | None = None
    template_id: str | None = None
    validation: ValidationResult | None = None
    saved: bool = False
    save_failed: bool = False
    reporter: ProgressCallback | None = None

    def enter(self, stage: Stage, step: str) -> None:
        self.stage = stage
        self.report(step)

    def report(self, step: str, succeeded: bool | None = None) -> None:
        if self.reporter is not None:
            self.reporter(
                AutoconfigProgress(stage=self.stage, step=step, percentage=_PERCENTAGES[self.stage], succeeded=succeeded)
            )

    def note(self, level: str, message: str, stage: Stage | None = None) -> None:
        self.diagnostics.append(Diagnostic(stage=stage or self.stage, level=level, message=message))


class AutoconfigOrchestrator:
    """Sequence the pipeline stages for one site at a time.

    The template library is built once and shared read-only; the store is
    the only shared mutable resource.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        library: TemplateLibrary,
        store: ProviderStore,
        config: Config | None = None,
    ) -> None:
        self.config = config or Config()
        self.library = library
        self.store = store
        self._client = client
        self._owns_client = False
        self.prober = SiteProber(client)
        self.discoverer = EndpointDiscoverer(client, max_workers=self.config.max_workers)
        self.matcher = ContentPatternMatcher()
        self.introspector = GraphQLIntrospector(client)
        self.pattern_engine = PatternEngine()
        self.generator = SchemaGenerator()
        self.engine = TransformEngine(client)
        self.validator = ConfigValidator(self.engine, client)

    @classmethod
    def build(
        cls,
        config: Config | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        store: ProviderStore | None = None,
    ) -> AutoconfigOrchestrator:
        config = config or Config.from_env()
        owns = client is None
        orchestrator = cls(
            client or build_client(config),
            build_library(),
            store or ProviderStore(config.home),
            config,
        )
        orchestrator._owns_client = owns
        return orchestrator

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> AutoconfigOrchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def analyze_and_configure(
        self,
        site_url: str,
        options: AutoconfigOptions | None = None,
        progress: ProgressCallback | None = None,
    ) -> AutoconfigResult:
        """Run every stage for *site_url*; *progress* is called as each stage starts."""
        options = options or AutoconfigOptions()
        started = time.monotonic()
        run = _Run(reporter=progress)
        timed_out = False
        try:
            async with asyncio.timeout(options.timeout):
                await self._pipeline(site_url, options, run)
        except TimeoutError:
            timed_out = True
            logger.warning("Analysis of %s timed out during %s", site_url, run.stage.value)
            run.note("error", f"timed out after {options.timeout:.0f}s during {run.stage.value}")
        except Exception as exc:
            logger.exception("Analysis of %s failed during %s", site_url, run.stage.value)
            run.note("error", f"unexpected {type(exc).__name__}: {exc}")

        config = run.config
        success = (
            not timed_out
            and config is not None
            and not config.incomplete
            and (run.validation is None or run.validation.passed)
            and not run.save_failed
        )
        result = AutoconfigResult(
            success=success,
            config=config,
            fingerprint=run.fingerprint,
            template_id=run.template_id,
            validation=run.validation,
            diagnostics=run.diagnostics,
            saved=run.saved,
            timed_out=timed_out,
            duration=round(time.monotonic() - started, 3),
        )
        run.stage = Stage.COMPLETE
        run.report("timed out" if timed_out else "finished", succeeded=success)
        logger.info(
            "Analysis of %s finished: success=%s template=%s (%.1fs)",
            site_url, result.success, result.template_id, result.duration,
        )
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _pipeline(self, site_url: str, options: AutoconfigOptions, run: _Run) -> None:
        query = options.test_query or self.config.test_query

        run.enter(Stage.PROBE, f"probing {site_url}")
        try:
            base = normalize_base_url(site_url)
        except ValueError as exc:
            run.note("error", str(exc))
            return
        try:
            profile = await self.prober.probe(base)
        except ProbeError as exc:
            run.note("error", f"site unreachable: {exc.reason}")
            profile = SiteProfile(base_url=base)
            run.profile = profile
            run.template_id = GENERIC_ID
            run.config = self.generator.placeholder(
                profile, provider_name(profile, options.provider_name), f"site unreachable ({exc.reason})",
            )
            return
        run.profile = profile
        run.note("info", f"site type {profile.site_type.value}, tags: {', '.join(sorted(profile.tags)) or 'none'}")

        run.enter(Stage.DISCOVERY, "testing candidate endpoints")
        endpoints = await self.discoverer.discover(profile, query)
        if endpoints:
            run.note("info", f"{len(endpoints)} endpoint(s) answered with structured data")
        else:
            run.note("warning", "no API endpoint answered with structured data")
        seen = {e.url for e in endpoints}
        evidence = endpoints + [e for e in profile.endpoints if e.url not in seen]

        run.enter(Stage.MATCHING, "looking for entity lists")
        schema = self.matcher.match(profile, evidence)
        if schema.fields:
            run.note("info", f"entity list at {schema.results_path}: {', '.join(r.value for r in schema.fields)}")
        else:
            run.note("warning", "no repeating entity list found")
        run.schema = schema

        run.enter(Stage.INTROSPECTION, "checking for a GraphQL schema")
        graphql_endpoint = self._graphql_endpoint(profile, endpoints)
        if graphql_endpoint is not None:
            target = options.force_type or schema.content_type or profile.content_hint
            info = await self.introspector.introspect(graphql_endpoint.url, profile, target)
            if info is None:
                run.note("warning", f"introspection disabled at {graphql_endpoint.url}")
            else:
                schema = self.matcher.refine_with_graphql(schema, info)
                run.note("info", f"{len(info.candidates)} candidate queries from {len(info.queries)} root fields")
        if options.force_type is not None:
            schema = schema.model_copy(update={"content_type": options.force_type})
        run.schema = schema

        run.enter(Stage.FINGERPRINT, "classifying the API architecture")
        fingerprint = self.pattern_engine.analyze(profile, schema)
        run.fingerprint = fingerprint
        run.note("info", f"{fingerprint.architecture.value} ({fingerprint.confidence:.2f})")

        run.enter(Stage.GENERATION, "ranking templates")
        self._generate(profile, schema, options, run)
        config = run.config
        if config is None or config.incomplete:
            return

        run.enter(Stage.VALIDATION, "skipped" if options.skip_validation else f"searching for '{query}'")
        if options.skip_validation:
            run.note("info", "validation skipped")
        else:
            validation = await self.validator.validate(config, query, timeout=options.timeout)
            run.validation = validation
            if validation.passed:
                run.config = config.model_copy(update={"last_validated_at": datetime.now(timezone.utc)})
                run.note("info", f"{validation.result_count} result(s) for '{validation.test_query}'")
            else:
                failed = [c.name for c in validation.checks if not c.passed]
                failed += [f.field for f in validation.field_failures]
                run.note("warning", f"validation failed: {', '.join(failed) or 'no results'}")

        run.enter(Stage.STORAGE, "saving config")
        await self._store(options, run)

    @staticmethod
    def _graphql_endpoint(profile: SiteProfile, endpoints: list[ApiEndpoint]) -> ApiEndpoint | None:
        for endpoint in [*endpoints, *profile.endpoints]:
            if endpoint.api_type == ApiType.GRAPHQL:
                return endpoint
        return None

    def _generate(
        self,
        profile: SiteProfile,
        schema: ContentSchema,
        options: AutoconfigOptions,
        run: _Run,
    ) -> None:
        name = provider_name(profile, options.provider_name)
        for template, score in self.library.rank(profile, schema, options.force_type):
            try:
                config = template.apply(profile, schema, name)
            except GenerationError as exc:
                run.note("warning", f"{template.id} (score {score:.0f}) failed: {', '.join(exc.missing)}")
                continue
            run.template_id = template.id
            run.config = config.model_copy(
                update={"notes": [f"Generated by the {template.name} template (score {score:.0f})", *config.notes]}
            )
            run.note("info", f"selected template {template.id} (score {score:.0f})")
            return

        # Generic always ranks; reaching here means even it lacked required roles.
        run.template_id = GENERIC_ID
        run.config = self.generator.placeholder(profile, name, "no template could map the required fields")
        run.note("error", f"no template produced a complete config; missing {', '.join(schema.missing()) or 'endpoints'}")

    async def _store(self, options: AutoconfigOptions, run: _Run) -> None:
        config = run.config
        if config is None:
            return
        if options.dry_run:
            run.note("info", "dry run, config not saved")
            return
        if run.validation is not None and not run.validation.passed and not options.accept_partial:
            run.note("warning", "config not saved because validation failed")
            return
        try:
            path = await self.store.save(config)
        except (OSError, ValueError) as exc:
            logger.warning("Could not save provider '%s'", config.name, exc_info=True)
            run.save_failed = True
            run.note("error", f"save failed: {exc}")
            return
        run.saved = True
        run.note("info", f"saved to {path}")


async def analyze_and_configure(
    site_url: str,
    options: AutoconfigOptions | None = None,
    *,
    config: Config | None = None,
    progress: ProgressCallback | None = None,
) -> AutoconfigResult:
    """One-shot helper that builds an orchestrator, runs it and closes it."""
    async with AutoconfigOrchestrator.build(config) as orchestrator:
        return await orchestrator.analyze_and_configure(site_url, options, progress)

