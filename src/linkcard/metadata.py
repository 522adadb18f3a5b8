"""Open Graph scraping and link card metadata resolution."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import html
import logging
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .assets import AssetCache
from .core.config import LinkCardConfig
from .core.diagnostics import DiagnosticEmitter, ensure_emitter
from .core.exceptions import LinkCardError
from .core.http import DEFAULT_TIMEOUT, fetch_text
from .core.urls import decode_uri, hostname, with_scheme


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OpenGraphData:
    """Raw metadata scraped from a page; every field is optional."""

    title: str | None = None
    description: str | None = None
    image: str | None = None
    image_alt: str | None = None
    site_name: str | None = None
    url: str | None = None


@dataclass(frozen=True, slots=True)
class LinkMetadata:
    """Resolved, markup-safe values consumed by the card renderer."""

    title: str
    description: str
    favicon_src: str
    image_src: str
    image_alt: str
    display_url: str
    url: str


def _meta_content(soup: BeautifulSoup, *names: str) -> str | None:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find(
            "meta", attrs={"name": name}
        )
        if tag is None:
            continue
        content = tag.get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
    return None


def parse_open_graph(document: str, base_url: str) -> OpenGraphData:
    """Extract Open Graph data, falling back to Twitter cards and plain HTML."""
    soup = BeautifulSoup(document, "html.parser")

    title = _meta_content(soup, "og:title", "twitter:title")
    if title is None and soup.title is not None and soup.title.string:
        title = soup.title.string.strip() or None

    image = _meta_content(
        soup, "og:image", "og:image:url", "og:image:secure_url", "twitter:image"
    )
    if image is not None:
        image = urljoin(base_url, image)

    return OpenGraphData(
        title=title,
        description=_meta_content(
            soup, "og:description", "twitter:description", "description"
        ),
        image=image,
        image_alt=_meta_content(soup, "og:image:alt", "twitter:image:alt"),
        site_name=_meta_content(soup, "og:site_name"),
        url=_meta_content(soup, "og:url"),
    )


def scrape_open_graph(
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str | None = None,
) -> OpenGraphData | None:
    """Fetch ``url`` and return its Open Graph data, or ``None`` on failure."""
    try:
        document, final_url = fetch_text(url, timeout=timeout, user_agent=user_agent)
    except LinkCardError as exc:
        logger.warning("Failed to get the Open Graph data of %s due to %s", url, exc)
        return None
    try:
        return parse_open_graph(document, final_url)
    except Exception as exc:  # noqa: BLE001 - parser failures degrade to defaults
        logger.warning("Failed to parse the Open Graph data of %s: %s", url, exc)
        return None


def display_url(url: str, *, shorten: bool) -> str:
    """Return the decoded URL, or hostname, shown below the card title."""
    candidate = hostname(url) if shorten else url
    try:
        return decode_uri(candidate)
    except UnicodeDecodeError as exc:
        logger.error('Cannot decode url: "%s"\n %s', candidate, exc)
        return candidate


def _encode(value: str | None) -> str:
    return html.escape(value) if value else ""


class MetadataFetcher:
    """Resolve the :class:`LinkMetadata` for a URL, never raising on network errors."""

    def __init__(
        self,
        config: LinkCardConfig,
        *,
        assets: AssetCache | None = None,
        emitter: DiagnosticEmitter | None = None,
    ) -> None:
        self.config = config
        self.emitter = ensure_emitter(emitter)
        self.assets = assets
        if self.assets is None and config.cache:
            self.assets = AssetCache(
                config.cache_directory,
                reduction=config.image_reduction,
                timeout=config.timeout,
                user_agent=config.user_agent,
                emitter=self.emitter,
            )

    async def scrape(self, url: str) -> OpenGraphData | None:
        """Return the scraped Open Graph data for ``url``."""
        return await asyncio.to_thread(
            scrape_open_graph,
            url,
            timeout=self.config.timeout,
            user_agent=self.config.user_agent,
        )

    async def fetch(self, url: str) -> LinkMetadata:
        target = with_scheme(url)
        host = hostname(target)
        if not host:
            raise ValueError(f"Invalid URL: '{url}'")

        og = await self.scrape(target)
        self.emitter.event("metadata_fetch", {"url": target, "found": og is not None})
        og = og or OpenGraphData()

        title = _encode(og.title) or host
        favicon_src, image_src = await asyncio.gather(
            self._image_source(self.config.favicon_url(host)),
            self._image_source(og.image),
        )

        return LinkMetadata(
            title=title,
            description=_encode(og.description),
            favicon_src=favicon_src,
            image_src=image_src,
            image_alt=_encode(og.image_alt) or title,
            display_url=html.escape(display_url(target, shorten=self.config.shorten_url)),
            url=html.escape(target),
        )

    async def _image_source(self, source: str | None) -> str:
        if not source:
            return ""
        if self.assets is None:
            return html.escape(source)
        try:
            filename = await self.assets.materialize(source)
        except Exception as exc:  # noqa: BLE001 - only this field is dropped
            self.emitter.warning(f"Failed to cache image from '{source}': {exc}", exc)
            return ""
        if filename is None:
            return ""
        return html.escape(self.config.public_path(filename))


__all__ = [
    "LinkMetadata",
    "MetadataFetcher",
    "OpenGraphData",
    "display_url",
    "parse_open_graph",
    "scrape_open_graph",
]
