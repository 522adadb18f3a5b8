"""Shared building blocks for the link card pipeline."""

from __future__ import annotations

from .config import ImageReductionConfig, LinkCardConfig, load_config
from .diagnostics import DiagnosticEmitter, LoggingEmitter, NullEmitter, ensure_emitter
from .exceptions import (
    AssetFetchError,
    ImageConversionError,
    LinkCardError,
    UnknownImageFormatError,
)


__all__ = [
    "AssetFetchError",
    "DiagnosticEmitter",
    "ImageConversionError",
    "ImageReductionConfig",
    "LinkCardConfig",
    "LinkCardError",
    "LoggingEmitter",
    "NullEmitter",
    "UnknownImageFormatError",
    "ensure_emitter",
    "load_config",
]
