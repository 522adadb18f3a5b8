"""Exception hierarchy for the link card pipeline."""

from __future__ import annotations


class LinkCardError(RuntimeError):
    """Base exception for link card failures."""


class AssetFetchError(LinkCardError):
    """Raised when a remote asset cannot be downloaded."""


class ImageConversionError(LinkCardError):
    """Raised when Pillow fails to re-encode an image payload."""


class UnknownImageFormatError(LinkCardError):
    """Raised when a payload matches none of the known image signatures."""


def exception_messages(exc: BaseException) -> list[str]:
    """Return the collected message chain for an exception and its causes."""
    messages: list[str] = []
    visited: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in visited:
        visited.add(id(current))
        text = str(current).strip()
        if text:
            first_line = text.splitlines()[0].strip()
            if first_line:
                messages.append(first_line)
        current = current.__cause__ or current.__context__
    return messages


def exception_hint(exc: BaseException) -> str | None:
    """Return the most specific message available for an exception chain."""
    messages = exception_messages(exc)
    return messages[-1] if messages else None


__all__ = [
    "AssetFetchError",
    "ImageConversionError",
    "LinkCardError",
    "UnknownImageFormatError",
    "exception_hint",
    "exception_messages",
]
