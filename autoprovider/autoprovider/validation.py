"""Replay real queries through the transform engine to validate a config."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from autoprovider.models import FieldCheck, ValidationCheck, ValidationResult
from autoprovider.provider_config import DynamicProviderConfig
from autoprovider.runtime.catalog import child_params
from autoprovider.runtime.engine import ExtractionError, Operation, OperationResult, TransformEngine

logger = logging.getLogger(__name__)

FALLBACK_QUERIES = ("naruto", "one piece", "attack on titan")
_SAMPLE_CHARS = 120


def _non_empty(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, dict)):
        return bool(value)
    return True


class ConfigValidator:
    """Check that a generated config returns non-empty, well-shaped results."""

    def __init__(self, engine: TransformEngine, client: httpx.AsyncClient) -> None:
        self._engine = engine
        self._client = client

    async def validate(
        self,
        config: DynamicProviderConfig,
        test_query: str | None = None,
        timeout: float = 30.0,
    ) -> ValidationResult:
        query = test_query or FALLBACK_QUERIES[0]
        logger.info("Validating provider '%s' with query '%s'", config.name, query)
        checks: list[ValidationCheck] = []
        field_checks: list[FieldCheck] = []
        state: dict[str, Any] = {"query": query, "count": 0}
        try:
            async with asyncio.timeout(timeout):
                await self._run(config, query, checks, field_checks, state)
        except TimeoutError:
            logger.warning("Validation of '%s' timed out after %.0fs", config.name, timeout)
            checks.append(ValidationCheck(
                name="timeout", passed=False, critical=True, message=f"validation timed out after {timeout:.0f}s",
            ))

        passed = (
            all(c.passed for c in checks if c.critical)
            and state["count"] > 0
            and not any(
                not fc.passed and fc.field in config.search.required_fields for fc in field_checks
            )
        )
        if passed:
            logger.info("Validation passed for '%s'", config.name)
        else:
            logger.warning(
                "Validation failed for '%s': %s",
                config.name, [c.name for c in checks if not c.passed] + [f.field for f in field_checks if not f.passed],
            )
        return ValidationResult(
            passed=passed,
            test_query=state["query"],
            result_count=state["count"],
            field_checks=field_checks,
            checks=checks,
        )

    async def _run(
        self,
        config: DynamicProviderConfig,
        query: str,
        checks: list[ValidationCheck],
        field_checks: list[FieldCheck],
        state: dict[str, Any],
    ) -> None:
        connectivity = await self._connectivity(config)
        checks.append(connectivity)
        if not connectivity.passed:
            return

        result = await self._search(config, query)
        if not result.items:
            for alternative in FALLBACK_QUERIES:
                if alternative == query.lower():
                    continue
                retry = await self._search(config, alternative)
                if retry.items:
                    logger.info("Query '%s' returned nothing; '%s' did", query, alternative)
                    query, result = alternative, retry
                    break

        state["query"] = query
        state["count"] = len(result.items)
        if result.ok and result.items:
            message = f"found {len(result.items)} result(s) for '{query}'"
        elif result.ok:
            message = f"no results for '{query}'"
        else:
            message = f"search failed: {result.error}"
        checks.append(ValidationCheck(name="search", passed=bool(result.items), critical=True, message=message))
        field_checks.extend(self._field_checks(config, result))
        if not result.items:
            return

        if config.children is None:
            return
        children = await self._engine.execute(
            config, Operation.LIST_CHILDREN, child_params(result.items[0]),
        )
        checks.append(ValidationCheck(
            name="children",
            passed=bool(children.items),
            message=(
                f"found {len(children.items)} child item(s)" if children.items
                else f"no child items: {children.error or 'empty list'}"
            ),
        ))
        if not children.items or config.media is None:
            return
        leaf = await self._engine.execute(config, Operation.RESOLVE_LEAF, child_params(children.items[0]))
        checks.append(ValidationCheck(
            name="media",
            passed=bool(leaf.items),
            message=(
                f"resolved {len(leaf.items)} media item(s)" if leaf.items
                else f"no media: {leaf.error or 'empty list'}"
            ),
        ))

    async def _connectivity(self, config: DynamicProviderConfig) -> ValidationCheck:
        url = config.hosts.api_base or config.hosts.base_url
        headers = dict(config.hosts.headers)
        if config.hosts.referer:
            headers["Referer"] = config.hosts.referer
        try:
            resp = await self._client.head(url, headers=headers)
        except httpx.HTTPError as exc:
            return ValidationCheck(name="connectivity", passed=False, critical=True, message=f"connection failed: {exc}")
        # Some APIs refuse HEAD but are otherwise reachable.
        ok = resp.status_code < 400 or resp.status_code == 405
        return ValidationCheck(
            name="connectivity", passed=ok, critical=True, message=f"{url} answered {resp.status_code}",
        )

    async def _search(self, config: DynamicProviderConfig, query: str) -> OperationResult:
        return await self._engine.execute(config, Operation.SEARCH, {"query": query, "title": query})

    @staticmethod
    def _field_checks(config: DynamicProviderConfig, result: OperationResult) -> list[FieldCheck]:
        failed_field = result.error.field if isinstance(result.error, ExtractionError) else None
        out: list[FieldCheck] = []
        for mapping in config.search.mappings:
            target = mapping.target_field
            if target == failed_field:
                out.append(FieldCheck(field=target, passed=False, message=f"extraction error: {result.error.reason}"))
                continue
            sample = next((item[target] for item in result.items if _non_empty(item.get(target))), None)
            if sample is not None:
                out.append(FieldCheck(field=target, passed=True, sample=str(sample)[:_SAMPLE_CHARS]))
            elif not result.ok:
                out.append(FieldCheck(field=target, passed=False, message="search failed"))
            else:
                out.append(FieldCheck(field=target, passed=False, message="empty on every sampled result"))
        return out
