"""Scan a document tree for bare-URL paragraphs and swap them for link cards.

Jobs run concurrently and commit independently. A job never relies on a
position captured at scan time: the target element is located again in its
current parent right before it is replaced, so commits may happen in any
order and a missing target turns the commit into a no-op.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Any, Protocol, TypeVar
import xml.etree.ElementTree as ElementTree

from .assets import AssetCache
from .core.config import LinkCardConfig
from .core.diagnostics import DiagnosticEmitter, ensure_emitter
from .core.exceptions import exception_hint
from .core.urls import find_urls
from .metadata import LinkMetadata, MetadataFetcher
from .render import render_link_card


logger = logging.getLogger(__name__)

T = TypeVar("T")

HTML_NODE_TAG = "html"


class JobStatus(Enum):
    """Lifecycle of a replacement job."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(eq=False, slots=True)
class CardJob:
    """Replacement scheduled for a single eligible paragraph."""

    node: ElementTree.Element
    url: str
    status: JobStatus = JobStatus.PENDING
    markup: str | None = None
    error: BaseException | None = field(default=None, repr=False)


class Fetcher(Protocol):
    """Anything able to resolve link card metadata for a URL."""

    def fetch(self, url: str) -> Awaitable[LinkMetadata]: ...


NodeFactory = Callable[[str], ElementTree.Element]


def html_node(markup: str) -> ElementTree.Element:
    """Default replacement: an ``html`` node carrying the raw markup."""
    node = ElementTree.Element(HTML_NODE_TAG)
    node.text = markup
    return node


def eligible_url(paragraph: ElementTree.Element) -> str | None:
    """Return the URL of a bare-link paragraph, or ``None`` when ineligible."""
    if paragraph.tag != "p" or len(paragraph) or paragraph.attrib:
        return None
    text = paragraph.text or ""
    urls = find_urls(text)
    if len(urls) != 1:
        return None
    return urls[0]


def scan_tree(root: ElementTree.Element) -> list[CardJob]:
    """Collect one job per eligible paragraph, in document order."""
    jobs: list[CardJob] = []
    for paragraph in root.iter("p"):
        url = eligible_url(paragraph)
        if url is not None:
            jobs.append(CardJob(node=paragraph, url=url))
    return jobs


def locate(
    root: ElementTree.Element, node: ElementTree.Element
) -> tuple[ElementTree.Element, int] | None:
    """Return the current parent and index of ``node`` inside ``root``."""
    for parent in root.iter():
        for index, child in enumerate(parent):
            if child is node:
                return parent, index
    return None


def replace_node(
    root: ElementTree.Element,
    node: ElementTree.Element,
    replacement: ElementTree.Element,
) -> bool:
    """Replace ``node`` in place, keeping its tail text; ``False`` if it is gone."""
    position = locate(root, node)
    if position is None:
        return False
    parent, index = position
    replacement.tail = node.tail
    parent[index] = replacement
    return True


class LinkCardTransform:
    """Coordinate the concurrent replacement jobs of one transform invocation."""

    def __init__(
        self,
        config: LinkCardConfig,
        *,
        fetcher: Fetcher | None = None,
        assets: AssetCache | None = None,
        node_factory: NodeFactory | None = None,
        emitter: DiagnosticEmitter | None = None,
    ) -> None:
        self.config = config
        self.emitter = ensure_emitter(emitter)
        self.fetcher = fetcher or MetadataFetcher(config, assets=assets, emitter=self.emitter)
        self.node_factory = node_factory or html_node

    async def run(self, root: ElementTree.Element) -> list[CardJob]:
        jobs = scan_tree(root)
        if not jobs:
            return jobs
        outcomes = await asyncio.gather(
            *(self._run_job(root, job) for job in jobs), return_exceptions=True
        )
        for job, outcome in zip(jobs, outcomes):
            if isinstance(outcome, BaseException) and job.status is JobStatus.PENDING:
                self._fail(job, outcome)
        return jobs

    async def _run_job(self, root: ElementTree.Element, job: CardJob) -> None:
        try:
            card = await self.fetcher.fetch(job.url)
            markup = render_link_card(card)
        except Exception as exc:  # noqa: BLE001 - a failed job keeps its paragraph
            self._fail(job, exc)
            return
        self._commit(root, job, markup)

    def _commit(self, root: ElementTree.Element, job: CardJob, markup: str) -> None:
        # No suspension point between locating and replacing the target.
        if replace_node(root, job.node, self.node_factory(markup)):
            job.status = JobStatus.SUCCEEDED
            job.markup = markup
            self.emitter.event("link_card", {"url": job.url})
            return
        job.status = JobStatus.SKIPPED
        logger.debug("Paragraph for %s is no longer in the tree; skipping.", job.url)

    def _fail(self, job: CardJob, exc: BaseException) -> None:
        job.status = JobStatus.FAILED
        job.error = exc
        hint = exception_hint(exc) or type(exc).__name__
        self.emitter.warning(f"Failed to create a link card for '{job.url}': {hint}", exc)


async def transform_tree(
    root: ElementTree.Element,
    config: LinkCardConfig | None = None,
    *,
    fetcher: Fetcher | None = None,
    assets: AssetCache | None = None,
    node_factory: NodeFactory | None = None,
    emitter: DiagnosticEmitter | None = None,
) -> ElementTree.Element:
    """Replace every eligible paragraph of ``root`` with a link card.

    The tree is mutated in place and always returned, even when some or all
    jobs fail.
    """
    active_emitter = ensure_emitter(emitter)
    try:
        transform = LinkCardTransform(
            config or LinkCardConfig(),
            fetcher=fetcher,
            assets=assets,
            node_factory=node_factory,
            emitter=active_emitter,
        )
        await transform.run(root)
    except Exception as exc:  # noqa: BLE001 - the document is returned regardless
        active_emitter.error(f"Error: {exc}", exc)
    return root


def run_coroutine(coroutine: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion from synchronous code.

    When the calling thread already runs an event loop the coroutine is
    executed on a private loop in a worker thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coroutine)
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="linkcard") as executor:
        return executor.submit(asyncio.run, coroutine).result()


def run_transform(
    root: ElementTree.Element,
    config: LinkCardConfig | None = None,
    **kwargs: Any,
) -> ElementTree.Element:
    """Synchronous counterpart of :func:`transform_tree`."""
    return run_coroutine(transform_tree(root, config, **kwargs))


__all__ = [
    "HTML_NODE_TAG",
    "CardJob",
    "Fetcher",
    "JobStatus",
    "LinkCardTransform",
    "eligible_url",
    "html_node",
    "locate",
    "replace_node",
    "run_coroutine",
    "run_transform",
    "scan_tree",
    "transform_tree",
]
