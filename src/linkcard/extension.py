"""Markdown extension that turns bare-URL paragraphs into link cards."""

from __future__ import annotations

from typing import Any
import xml.etree.ElementTree as ElementTree

from markdown import Markdown
from markdown.extensions import Extension
from markdown.treeprocessors import Treeprocessor

from .core.config import (
    DEFAULT_FAVICON_SERVICE,
    DEFAULT_OUTPUT_PATH,
    LinkCardConfig,
)
from .core.diagnostics import DiagnosticEmitter
from .core.http import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT
from .pipeline import Fetcher, run_transform


class _LinkCardTreeprocessor(Treeprocessor):
    """Replace standalone URL paragraphs with stashed link card markup."""

    def __init__(
        self,
        md: Markdown,
        *,
        config: LinkCardConfig,
        fetcher: Fetcher | None = None,
        emitter: DiagnosticEmitter | None = None,
    ) -> None:
        super().__init__(md)
        self._config = config
        self._fetcher = fetcher
        self._emitter = emitter

    def run(self, root: ElementTree.Element) -> ElementTree.Element:  # type: ignore[override]
        run_transform(
            root,
            self._config,
            fetcher=self._fetcher,
            node_factory=self._stash_markup,
            emitter=self._emitter,
        )
        return root

    def _stash_markup(self, markup: str) -> ElementTree.Element:
        # A paragraph holding only the placeholder is unwrapped by the raw HTML
        # postprocessor because the card starts with a block-level element.
        paragraph = ElementTree.Element("p")
        paragraph.text = self.md.htmlStash.store(markup)
        return paragraph


class LinkCardExtension(Extension):
    """Register the link card treeprocessor."""

    def __init__(
        self,
        *,
        settings: LinkCardConfig | None = None,
        fetcher: Fetcher | None = None,
        emitter: DiagnosticEmitter | None = None,
        **kwargs: Any,
    ) -> None:
        self._settings = settings
        self._fetcher = fetcher
        self._emitter = emitter
        self.config = {
            "cache": [False, "Download favicons and preview images locally."],
            "shorten_url": [False, "Display the hostname instead of the full URL."],
            "image_reduction": [{}, "Mapping with 'enable' and 'format' keys."],
            "base_directory": ["public", "Directory of the published site."],
            "output_path": [DEFAULT_OUTPUT_PATH, "Public prefix of cached assets."],
            "timeout": [DEFAULT_TIMEOUT, "Timeout in seconds for each request."],
            "user_agent": [DEFAULT_USER_AGENT, "User-Agent header sent with requests."],
            "favicon_service": [DEFAULT_FAVICON_SERVICE, "Favicon lookup URL template."],
        }
        super().__init__(**kwargs)

    def settings(self) -> LinkCardConfig:
        """Return the validated configuration for this extension instance."""
        if self._settings is not None:
            return self._settings
        options = self.getConfigs()
        options["image_reduction"] = dict(options.get("image_reduction") or {})
        return LinkCardConfig.model_validate(options)

    def extendMarkdown(self, md: Markdown) -> None:  # type: ignore[override]  # noqa: N802
        processor = _LinkCardTreeprocessor(
            md,
            config=self.settings(),
            fetcher=self._fetcher,
            emitter=self._emitter,
        )
        md.treeprocessors.register(processor, "linkcard", priority=15)


def makeExtension(  # noqa: N802 - Markdown expects this entry point name
    **kwargs: Any,
) -> LinkCardExtension:  # pragma: no cover - entry point
    return LinkCardExtension(**kwargs)


__all__ = ["LinkCardExtension", "makeExtension"]
