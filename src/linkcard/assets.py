"""Content-addressable cache for remote images referenced by link cards.

Every asset is stored once under ``<hash>.<ext>`` where ``hash`` is the
SHA-256 digest of the normalised, percent-decoded source URL and ``ext`` is
derived from the leading bytes of the stored payload, after any re-encoding.
The source URL's apparent extension is never part of the filename.
"""

from __future__ import annotations

import asyncio
from hashlib import sha256
from io import BytesIO
import logging
import os
from pathlib import Path
import tempfile

from PIL import Image

from .core.config import ImageReductionConfig
from .core.diagnostics import DiagnosticEmitter, ensure_emitter
from .core.exceptions import (
    ImageConversionError,
    LinkCardError,
    UnknownImageFormatError,
)
from .core.http import DEFAULT_TIMEOUT, fetch_bytes
from .core.urls import decode_uri, normalise_url


logger = logging.getLogger(__name__)

# (extension, offset, magic bytes); first match wins.
IMAGE_SIGNATURES: tuple[tuple[str, int, bytes], ...] = (
    ("jpg", 0, b"\xff\xd8\xff"),
    ("png", 0, b"\x89PNG"),
    ("gif", 0, b"GIF8"),
    ("bmp", 0, b"BM"),
    ("webp", 0, b"RIFF"),
    ("avif", 4, b"ftypavif"),
    ("avif", 4, b"ftypavis"),
)

# Pillow format names for the extensions users are likely to configure.
_PILLOW_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "gif": "GIF",
    "bmp": "BMP",
    "webp": "WEBP",
    "avif": "AVIF",
}
_OPAQUE_FORMATS = {"JPEG", "BMP"}


def detect_image_extension(data: bytes) -> str:
    """Return the file extension matching the payload's binary signature."""
    for extension, offset, magic in IMAGE_SIGNATURES:
        if data[offset : offset + len(magic)] == magic:
            return extension
    raise UnknownImageFormatError("Unknown image format")


def asset_key(url: str) -> str:
    """Return the cache key for a normalised source URL."""
    try:
        decoded = decode_uri(url)
    except UnicodeDecodeError:
        logger.warning("Cannot decode url '%s'; hashing it verbatim.", url)
        decoded = url
    return sha256(decoded.encode("utf-8")).hexdigest()


def reencode_image(data: bytes, image_format: str) -> bytes:
    """Re-encode an image payload into ``image_format`` using Pillow."""
    target = _PILLOW_FORMATS.get(image_format.lower(), image_format.upper())
    buffer = BytesIO()
    try:
        with Image.open(BytesIO(data)) as image:
            image.load()
            converted = image
            if target in _OPAQUE_FORMATS and image.mode not in ("RGB", "L"):
                converted = image.convert("RGB")
            elif image.mode == "P":
                converted = image.convert("RGBA")
            converted.save(buffer, format=target)
    except Exception as exc:  # noqa: BLE001 - includes Image.DecompressionBombError
        raise ImageConversionError(
            f"Failed to convert image to {image_format}: {exc}"
        ) from exc
    return buffer.getvalue()


def find_cached_asset(directory: Path, prefix: str) -> str | None:
    """Return the first filename in ``directory`` starting with ``prefix``."""
    try:
        names = sorted(os.listdir(directory))
    except OSError:
        return None
    for name in names:
        if name.startswith(prefix):
            return name
    return None


def write_asset(directory: Path, filename: str, data: bytes) -> Path:
    """Write ``data`` atomically so concurrent readers never see partial files."""
    target = directory / filename
    # Temporary names start with a dot so prefix lookups never match them.
    fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{filename}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return target


class AssetCache:
    """Download, optionally re-encode, and name image assets by content hash.

    A cache instance is bound to the event loop that first uses it. Requests
    for the same key issued while a download is in flight share that
    download; resolved filenames are memoised for the lifetime of the
    instance.
    """

    def __init__(
        self,
        cache_dir: Path | str,
        *,
        reduction: ImageReductionConfig | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str | None = None,
        emitter: DiagnosticEmitter | None = None,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.reduction = reduction or ImageReductionConfig()
        self.timeout = timeout
        self.user_agent = user_agent
        self.emitter = ensure_emitter(emitter)
        self._resolved: dict[str, str] = {}
        self._inflight: dict[str, asyncio.Task[str | None]] = {}

    async def materialize(self, source_url: str) -> str | None:
        """Return the cached filename for ``source_url`` or ``None`` on failure."""
        try:
            url = normalise_url(source_url)
        except ValueError as exc:
            self.emitter.warning(f"Failed to parse url '{source_url}': {exc}")
            return None

        key = asset_key(url)
        resolved = self._lookup_memo(key)
        if resolved is not None:
            return await resolved if isinstance(resolved, asyncio.Task) else resolved

        existing = await asyncio.to_thread(find_cached_asset, self.cache_dir, key)
        if existing is not None:
            self.emitter.event("asset_fetch_cached", {"url": url, "reason": "cache"})
            self._resolved[key] = existing
            return existing

        # Another job may have registered the key while the directory was read.
        resolved = self._lookup_memo(key)
        if resolved is not None:
            return await resolved if isinstance(resolved, asyncio.Task) else resolved

        task = asyncio.ensure_future(self._download(url, key))
        self._inflight[key] = task
        try:
            filename = await task
        finally:
            self._inflight.pop(key, None)
        if filename is not None:
            self._resolved[key] = filename
        return filename

    def _lookup_memo(self, key: str) -> str | asyncio.Task[str | None] | None:
        if key in self._resolved:
            return self._resolved[key]
        return self._inflight.get(key)

    async def _download(self, url: str, key: str) -> str | None:
        try:
            return await self._fetch_and_store(url, key)
        except UnknownImageFormatError as exc:
            self.emitter.warning(f"Unsupported image format for '{url}': {exc}")
        except ImageConversionError as exc:
            self.emitter.warning(str(exc), exc)
        except LinkCardError as exc:
            self.emitter.warning(f"Failed to download image from '{url}': {exc}", exc)
        except OSError as exc:
            self.emitter.warning(f"Failed to store image from '{url}': {exc}", exc)
        except Exception as exc:  # noqa: BLE001 - a broken asset only drops its field
            self.emitter.warning(f"Failed to cache image from '{url}': {exc}", exc)
        return None

    async def _fetch_and_store(self, url: str, key: str) -> str:
        await asyncio.to_thread(self.cache_dir.mkdir, parents=True, exist_ok=True)

        image_format = self.reduction.format if self.reduction.enable else None
        self.emitter.event("asset_fetch", {"url": url, "format": image_format})
        payload = await asyncio.to_thread(
            fetch_bytes, url, timeout=self.timeout, user_agent=self.user_agent
        )

        if image_format is not None:
            payload = await asyncio.to_thread(reencode_image, payload, image_format)

        extension = detect_image_extension(payload)
        filename = f"{key}.{extension}"
        await asyncio.to_thread(write_asset, self.cache_dir, filename, payload)
        self.emitter.event("asset_stored", {"filename": filename, "size": len(payload)})
        return filename


__all__ = [
    "IMAGE_SIGNATURES",
    "AssetCache",
    "asset_key",
    "detect_image_extension",
    "find_cached_asset",
    "reencode_image",
    "write_asset",
]
