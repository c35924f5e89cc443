"""autoprovider — Derive catalog provider configs from arbitrary websites."""

from autoprovider.config import Config
from autoprovider.models import AutoconfigOptions, AutoconfigProgress, AutoconfigResult
from autoprovider.orchestrator import AutoconfigOrchestrator, analyze_and_configure
from autoprovider.provider_config import ContentType, DynamicProviderConfig
from autoprovider.storage import ProviderStore

__all__ = [
    "AutoconfigOptions",
    "AutoconfigOrchestrator",
    "AutoconfigProgress",
    "AutoconfigResult",
    "Config",
    "ContentType",
    "DynamicProviderConfig",
    "ProviderStore",
    "analyze_and_configure",
]
