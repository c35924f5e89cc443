"""Site analysis stages: probe, discover, match, introspect, fingerprint."""

from autoprovider.analysis.discovery import EndpointDiscoverer
from autoprovider.analysis.fingerprint import PatternEngine
from autoprovider.analysis.introspector import GraphQLIntrospector, generate_queries
from autoprovider.analysis.matcher import ContentPatternMatcher
from autoprovider.analysis.prober import ProbeError, SiteProber

__all__ = [
    "ContentPatternMatcher",
    "EndpointDiscoverer",
    "GraphQLIntrospector",
    "PatternEngine",
    "ProbeError",
    "SiteProber",
    "generate_queries",
]
