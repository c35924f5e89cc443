"""CLI entry point for autoprovider."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable

import click

from autoprovider.config import Config
from autoprovider.models import AutoconfigOptions, AutoconfigProgress, AutoconfigResult, Stage
from autoprovider.provider_config import ContentType

_CONTENT_TYPES = {"anime": ContentType.ANIME, "manga": ContentType.MANGA, "both": ContentType.BOTH}


async def _analyze(
    url: str,
    options: AutoconfigOptions,
    config: Config,
    progress: Callable[[AutoconfigProgress], None] | None = None,
) -> AutoconfigResult:
    from autoprovider.orchestrator import AutoconfigOrchestrator

    async with AutoconfigOrchestrator.build(config) as orchestrator:
        return await orchestrator.analyze_and_configure(url, options, progress)


def _echo_progress(update: AutoconfigProgress) -> None:
    if update.stage != Stage.COMPLETE:
        click.echo(f"  [{update.percentage:>3}%] {update.stage.value}: {update.step}")


def _store(config: Config):
    from autoprovider.storage import ProviderStore

    return ProviderStore(config.home)


def _print_result(result: AutoconfigResult) -> None:
    fp = result.fingerprint
    click.echo(f"Architecture: {fp.architecture.value} (confidence {fp.confidence:.2f})")
    if fp.signatures:
        click.echo(f"Signatures:   {', '.join(fp.signatures)}")
    if fp.technologies:
        click.echo(f"Technologies: {', '.join(fp.technologies)}")
    click.echo(f"Template:     {result.template_id or '-'}")

    if result.config is not None:
        cfg = result.config
        label = " (incomplete)" if cfg.incomplete else ""
        click.echo(f"Provider:     {cfg.name} [{cfg.slug}]{label}")

    if fp.recommendations:
        click.echo("\nRecommendations:")
        for note in fp.recommendations:
            click.echo(f"  - {note}")

    click.echo("\nDiagnostics:")
    for diag in result.diagnostics:
        click.echo(f"  [{diag.level:<7}] {diag.stage.value}: {diag.message}")

    if result.validation is not None:
        v = result.validation
        click.echo(f"\nValidation ({v.result_count} result(s) for '{v.test_query}'):")
        for check in v.checks:
            mark = "✓" if check.passed else "✗"
            click.echo(f"  {mark} {check.name}: {check.message}")
        for fc in v.field_checks:
            mark = "✓" if fc.passed else "✗"
            detail = fc.sample if fc.passed else fc.message
            click.echo(f"  {mark} field {fc.field}: {detail}")

    click.echo()
    if result.success:
        click.echo("✓ Provider configured" + (" and saved" if result.saved else ""))
    else:
        reason = "timed out" if result.timed_out else "not fully configured"
        click.echo(f"✗ Analysis {reason}" + (" (saved anyway)" if result.saved else ""), err=True)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """autoprovider — Generate catalog provider configs from websites."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = Config.from_env()


@main.command()
@click.argument("url")
@click.option("--name", "-n", default=None, help="Provider name (default: derived from the site)")
@click.option("--type", "content_type", type=click.Choice(sorted(_CONTENT_TYPES)), default=None, help="Force the content type")
@click.option("--query", "-q", default=None, help="Search term used for discovery and validation")
@click.option("--skip-validation", is_flag=True, help="Do not replay a query against the generated config")
@click.option("--dry-run", is_flag=True, help="Analyze without saving")
@click.option("--accept-partial", is_flag=True, help="Save the config even when validation fails")
@click.option("--timeout", type=float, default=60.0, show_default=True, help="Overall timeout in seconds")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
@click.pass_obj
def analyze(
    config: Config,
    url: str,
    name: str | None,
    content_type: str | None,
    query: str | None,
    skip_validation: bool,
    dry_run: bool,
    accept_partial: bool,
    timeout: float,
    as_json: bool,
) -> None:
    """Analyze URL and generate a provider config."""
    options = AutoconfigOptions(
        provider_name=name,
        force_type=_CONTENT_TYPES[content_type] if content_type else None,
        test_query=query,
        skip_validation=skip_validation,
        dry_run=dry_run,
        timeout=timeout,
        accept_partial=accept_partial,
    )
    if not as_json:
        click.echo(f"Analyzing {url}...\n")
    result = asyncio.run(_analyze(url, options, config, progress=None if as_json else _echo_progress))

    if as_json:
        click.echo(result.model_dump_json(indent=2))
    else:
        _print_result(result)
    if not result.success:
        sys.exit(1)


@main.command("list")
@click.option("--long", "-l", "long_format", is_flag=True, help="Show template and content type")
@click.pass_obj
def list_providers(config: Config, long_format: bool) -> None:
    """List saved providers."""
    from autoprovider.generator import describe

    store = _store(config)
    names = store.list_all()
    if not names:
        click.echo("  (no providers saved)")
        return
    for name in names:
        cfg = store.load(name) if long_format else None
        if cfg is None:
            click.echo(name)
            continue
        info = describe(cfg)
        flag = " (incomplete)" if info["incomplete"] else ""
        click.echo(f"{info['slug']:<24} {info['template']:<16} {info['content_type']:<6} {info['name']}{flag}")


@main.command()
@click.argument("name")
@click.pass_obj
def show(config: Config, name: str) -> None:
    """Print a saved provider config as JSON."""
    from autoprovider.storage import ProviderNotFoundError

    try:
        click.echo(_store(config).export(name))
    except ProviderNotFoundError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)


@main.command()
@click.argument("name")
@click.pass_obj
def remove(config: Config, name: str) -> None:
    """Delete a saved provider config."""
    if asyncio.run(_store(config).delete(name)):
        click.echo(f"✓ Removed {name}")
    else:
        click.echo(f"✗ No provider named {name}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
