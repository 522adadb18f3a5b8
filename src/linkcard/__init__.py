"""Turn paragraphs made of a single bare URL into rich link cards."""

from __future__ import annotations

from linkcard.assets import AssetCache, detect_image_extension
from linkcard.core.config import ImageReductionConfig, LinkCardConfig, load_config
from linkcard.core.diagnostics import DiagnosticEmitter, LoggingEmitter, NullEmitter
from linkcard.core.exceptions import (
    AssetFetchError,
    ImageConversionError,
    LinkCardError,
    UnknownImageFormatError,
)
from linkcard.document import render_markdown
from linkcard.extension import LinkCardExtension, makeExtension
from linkcard.metadata import LinkMetadata, MetadataFetcher, OpenGraphData
from linkcard.pipeline import (
    CardJob,
    JobStatus,
    run_transform,
    scan_tree,
    transform_tree,
)
from linkcard.render import render_link_card
from linkcard.version import get_version


__version__ = get_version()

__all__ = [
    "AssetCache",
    "AssetFetchError",
    "CardJob",
    "DiagnosticEmitter",
    "ImageConversionError",
    "ImageReductionConfig",
    "JobStatus",
    "LinkCardConfig",
    "LinkCardError",
    "LinkCardExtension",
    "LinkMetadata",
    "LoggingEmitter",
    "MetadataFetcher",
    "NullEmitter",
    "OpenGraphData",
    "UnknownImageFormatError",
    "__version__",
    "detect_image_extension",
    "get_version",
    "load_config",
    "makeExtension",
    "render_link_card",
    "render_markdown",
    "run_transform",
    "scan_tree",
    "transform_tree",
]
