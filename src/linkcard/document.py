"""Markdown conversion with link cards enabled."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import markdown
from markdown.extensions import Extension

from .core.config import LinkCardConfig
from .core.diagnostics import DiagnosticEmitter
from .extension import LinkCardExtension
from .pipeline import Fetcher


DEFAULT_MARKDOWN_EXTENSIONS = [
    "abbr",
    "attr_list",
    "def_list",
    "footnotes",
    "md_in_html",
    "tables",
]


def render_markdown(
    text: str,
    config: LinkCardConfig | None = None,
    *,
    extensions: Iterable[str | Extension] | None = None,
    extension_configs: Mapping[str, Mapping[str, Any]] | None = None,
    fetcher: Fetcher | None = None,
    emitter: DiagnosticEmitter | None = None,
) -> str:
    """Convert Markdown into HTML, replacing bare-URL paragraphs with cards."""
    active = list(DEFAULT_MARKDOWN_EXTENSIONS if extensions is None else extensions)
    active.append(
        LinkCardExtension(
            settings=config or LinkCardConfig(),
            fetcher=fetcher,
            emitter=emitter,
        )
    )
    md = markdown.Markdown(
        extensions=active,
        extension_configs=dict(extension_configs or {}),
        output_format="html",
    )
    return md.convert(text)


__all__ = ["DEFAULT_MARKDOWN_EXTENSIONS", "render_markdown"]
