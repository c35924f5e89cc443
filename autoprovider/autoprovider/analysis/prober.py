"""Fetch a site's root and classify its technology surface."""

from __future__ import annotations

import asyncio
import logging
import re
from urllib.parse import urljoin, urlparse

import httpx
import trafilatura

from autoprovider.models import MAX_SAMPLE_CHARS, ApiEndpoint, SiteProfile, SiteType
from autoprovider.provider_config import ApiType, ContentType
from autoprovider.utils.http import site_headers

logger = logging.getLogger(__name__)

WELL_KNOWN_PATHS = ("/api", "/graphql", "/wp-json")

_FRAMEWORK_MARKERS: dict[str, re.Pattern[str]] = {
    "react": re.compile(r"data-reactroot|_reactRoot|__REACT|react(?:-dom)?(?:\.production)?(?:\.min)?\.js", re.I),
    "vue": re.compile(r"data-v-[0-9a-f]{6,}|__vue__|vue(?:\.runtime)?(?:\.global)?(?:\.min)?\.js", re.I),
    "angular": re.compile(r"ng-version=|ng-app\b"),
    "nextjs": re.compile(r"__NEXT_DATA__|/_next/"),
    "nuxt": re.compile(r"__NUXT__|/_nuxt/"),
    "svelte": re.compile(r"__sveltekit|class=\"[^\"]*svelte-[a-z0-9]+", re.I),
}
_SPA_ROOT_RE = re.compile(r"<div[^>]+id=[\"'](?:app|root|__next|__nuxt)[\"']", re.I)
_WORDPRESS_RE = re.compile(r"/wp-content/|/wp-json", re.I)

_ANIME_KEYWORDS = ("anime", "episode", "watch", "stream", "sub", "dub", "season", "video", "play")
_MANGA_KEYWORDS = ("manga", "chapter", "read", "scan", "webtoon", "comic", "manhwa", "manhua", "page")
_PLAYER_RE = re.compile(r"<video\b|class=\"[^\"]*(?:video-player|player-container)", re.I)
_READER_RE = re.compile(r"class=\"[^\"]*(?:manga-reader|chapter-images|page-container)", re.I)
_HREF_RE = re.compile(r"<a\b[^>]*\bhref=[\"']([^\"']+)[\"']", re.I)

_API_URL_PATTERNS = [
    re.compile(r"[\"']([^\"'\s<>]*?/api(?:/[^\"'\s<>]*)?)[\"']", re.I),
    re.compile(r"[\"']([^\"'\s<>]*?/graphql[^\"'\s<>]*?)[\"']", re.I),
    re.compile(r"[\"']([^\"'\s<>]*?/v\d+/[^\"'\s<>]*?)[\"']", re.I),
    re.compile(r"fetch\s*\(\s*[\"']([^\"']+)[\"']", re.I),
    re.compile(r"axios\s*\.\s*\w+\s*\(\s*[\"']([^\"']+)[\"']", re.I),
    re.compile(r"data-(?:api|endpoint|url)=[\"']([^\"']+)[\"']", re.I),
]
_HOST_RE = re.compile(r"https?://([a-zA-Z0-9\-.]+)")
_CDN_MARKERS = ("cloudfront", "akamai", "fastly", "bunnycdn", "cdn", "static", "assets", "media", "img", "images")
_MAX_HINTS = 25


class ProbeError(Exception):
    """Raised when a site's root page cannot be fetched at all."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to probe {url}: {reason}")


def normalize_base_url(url: str) -> str:
    """Reduce any site URL to ``scheme://host``."""
    parsed = urlparse(url if "://" in url else f"https://{url}")
    if not parsed.netloc:
        raise ValueError(f"Not a site URL: {url!r}")
    return f"{parsed.scheme or 'https'}://{parsed.netloc}"


class SiteProber:
    """Fetch the root page plus a few well-known sub-paths of a site."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def probe(self, url: str) -> SiteProfile:
        base = normalize_base_url(url)
        logger.info("Probing %s", base)

        try:
            root = await self._client.get(base + "/")
        except httpx.HTTPError as exc:
            raise ProbeError(base, f"{type(exc).__name__}: {exc}") from exc
        if root.status_code >= 500:
            raise ProbeError(base, f"HTTP {root.status_code}")

        sub_paths = (*WELL_KNOWN_PATHS, "/robots.txt")
        responses = await asyncio.gather(*(self._fetch(base + p) for p in sub_paths))
        subs = dict(zip(sub_paths, responses))

        html = root.text if "html" in root.headers.get("content-type", "") else ""
        tags = self._detect_tags(root, html, subs)
        endpoints = self._observed_endpoints(root, subs)

        hints: list[str] = []
        robots = subs.get("/robots.txt")
        if robots is not None and robots.status_code == 200:
            hints.extend(self._robots_api_paths(robots.text))
        if html:
            hints.extend(self._script_api_urls(html))

        title, description = self._metadata(html, base)
        server = root.headers.get("server")
        powered_by = root.headers.get("x-powered-by")
        required = site_headers(base)

        profile = SiteProfile(
            base_url=base,
            tags=frozenset(tags),
            endpoints=endpoints,
            required_headers=required,
            title=title,
            description=description,
            site_type=self._site_type(tags, html),
            content_hint=self._content_hint(html, title, description),
            api_hints=list(dict.fromkeys(hints))[:_MAX_HINTS],
            cdn_hosts=self._cdn_hosts(html, urlparse(base).netloc),
            server=server,
            powered_by=powered_by,
        )
        logger.info(
            "Probed %s: tags=%s, %d endpoint(s), %d hint(s)",
            base, sorted(profile.tags), len(endpoints), len(profile.api_hints),
        )
        return profile

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _fetch(self, url: str) -> httpx.Response | None:
        try:
            return await self._client.get(url)
        except httpx.HTTPError as exc:
            logger.debug("Sub-path %s unreachable: %s", url, exc)
            return None

    @staticmethod
    def _detect_tags(
        root: httpx.Response,
        html: str,
        subs: dict[str, httpx.Response | None],
    ) -> set[str]:
        tags: set[str] = set()
        content_type = root.headers.get("content-type", "").lower()
        if "json" in content_type:
            tags.add("json-root")

        for name, pattern in _FRAMEWORK_MARKERS.items():
            if html and pattern.search(html):
                tags.add(name)

        server = root.headers.get("server", "").lower()
        if "cf-ray" in root.headers or "cloudflare" in server:
            tags.add("cloudflare")

        if html and _WORDPRESS_RE.search(html):
            tags.add("wordpress")
        wp = subs.get("/wp-json")
        if wp is not None and wp.status_code == 200 and _is_json(wp):
            tags.add("wordpress")

        if html and ("graphql" in html.lower() or "__typename" in html):
            tags.add("graphql")
        gql = subs.get("/graphql")
        if gql is not None and gql.status_code < 500 and _is_json(gql):
            body = gql.text
            if '"data"' in body or '"errors"' in body or "__typename" in body:
                tags.add("graphql")
        return tags

    @staticmethod
    def _observed_endpoints(
        root: httpx.Response,
        subs: dict[str, httpx.Response | None],
    ) -> list[ApiEndpoint]:
        observed: list[ApiEndpoint] = []
        candidates = [("/", root)] + [(p, r) for p, r in subs.items() if p != "/robots.txt"]
        for path, resp in candidates:
            if resp is None or resp.status_code in (404, 410) or resp.status_code >= 500:
                continue
            if not _is_json(resp):
                continue
            body = resp.text
            api_type = ApiType.GRAPHQL if "graphql" in path else ApiType.REST
            observed.append(
                ApiEndpoint(
                    url=str(resp.url),
                    method=resp.request.method,
                    status=resp.status_code,
                    content_type=resp.headers.get("content-type"),
                    sample_body=body if len(body) <= MAX_SAMPLE_CHARS else None,
                    api_type=api_type,
                )
            )
        return observed

    @staticmethod
    def _robots_api_paths(robots_txt: str) -> list[str]:
        paths: list[str] = []
        for line in robots_txt.splitlines():
            key, _, value = line.strip().partition(":")
            if key.lower() not in ("allow", "disallow"):
                continue
            path = value.strip()
            if path and ("api" in path.lower() or "graphql" in path.lower()):
                paths.append(path)
        return paths

    @staticmethod
    def _script_api_urls(html: str) -> list[str]:
        found: list[str] = []
        for pattern in _API_URL_PATTERNS:
            for match in pattern.finditer(html):
                candidate = match.group(1).strip()
                if not candidate or "{{" in candidate or "${" in candidate:
                    continue
                if candidate.endswith((".js", ".css", ".png", ".jpg", ".svg", ".woff2")):
                    continue
                found.append(candidate)
        return found

    @staticmethod
    def _cdn_hosts(html: str, own_host: str) -> list[str]:
        hosts: list[str] = []
        for match in _HOST_RE.finditer(html):
            host = match.group(1).lower()
            if host != own_host and any(m in host for m in _CDN_MARKERS):
                hosts.append(host)
        return list(dict.fromkeys(hosts))

    @staticmethod
    def _metadata(html: str, url: str) -> tuple[str | None, str | None]:
        if not html:
            return None, None
        title: str | None = None
        description: str | None = None
        try:
            meta = trafilatura.extract_metadata(html, default_url=url)
        except Exception:
            logger.warning("trafilatura metadata extraction failed for %s", url, exc_info=True)
            meta = None
        if meta is not None:
            title = getattr(meta, "title", None) or None
            description = getattr(meta, "description", None) or None
        # Fallback: pull <title> from HTML when trafilatura finds none.
        if not title:
            match = re.search(r"<title[^>]*>(.*?)</title>", html, re.IGNORECASE | re.DOTALL)
            if match and match.group(1).strip():
                title = match.group(1).strip()
        return title, description

    @staticmethod
    def _site_type(tags: set[str], html: str) -> SiteType:
        if "__NEXT_DATA__" in html:
            return SiteType.HYBRID
        if tags & set(_FRAMEWORK_MARKERS) or _SPA_ROOT_RE.search(html):
            return SiteType.SPA
        return SiteType.STATIC

    @staticmethod
    def _content_hint(html: str, title: str | None, description: str | None) -> ContentType:
        text = f"{title or ''} {description or ''} {html}".lower()
        anime = sum(1 for k in _ANIME_KEYWORDS if k in text)
        manga = sum(1 for k in _MANGA_KEYWORDS if k in text)
        if _PLAYER_RE.search(html):
            anime += 3
        if _READER_RE.search(html):
            manga += 3
        for href in _HREF_RE.findall(html)[:100]:
            if "/anime/" in href or "/watch/" in href:
                anime += 1
            if "/manga/" in href or "/chapter/" in href or "/read/" in href:
                manga += 1

        if anime > 0 and manga > 0 and abs(anime - manga) < 3:
            return ContentType.BOTH
        if anime > manga:
            return ContentType.ANIME
        if manga > anime:
            return ContentType.MANGA
        return ContentType.UNKNOWN


def _is_json(resp: httpx.Response) -> bool:
    return "json" in resp.headers.get("content-type", "").lower()


def resolve_hint(base_url: str, hint: str) -> str:
    """Turn a path or URL found on a page into an absolute URL."""
    return urljoin(base_url + "/", hint)
