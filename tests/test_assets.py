from __future__ import annotations

import asyncio
from hashlib import sha256
from io import BytesIO
from pathlib import Path
import struct
import zlib

from PIL import Image
import pytest

import linkcard.assets as assets
from linkcard.assets import AssetCache, asset_key, detect_image_extension, reencode_image
from linkcard.core.config import ImageReductionConfig
from linkcard.core.exceptions import (
    AssetFetchError,
    ImageConversionError,
    UnknownImageFormatError,
)


def _png_bytes(color: tuple[int, int, int] = (200, 30, 30)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (8, 8), color).save(buffer, format="PNG")
    return buffer.getvalue()


def _oversized_png(width: int = 20000, height: int = 20000) -> bytes:
    def chunk(kind: bytes, body: bytes) -> bytes:
        crc = zlib.crc32(kind + body) & 0xFFFFFFFF
        return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", crc)

    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + chunk(b"IHDR", header)
        + chunk(b"IDAT", zlib.compress(b""))
        + chunk(b"IEND", b"")
    )


class _FakeDownloader:
    def __init__(self, payload: bytes | BaseException) -> None:
        self.payload = payload
        self.calls: list[str] = []

    def __call__(self, url: str, *, timeout: float | None = None, user_agent: str | None = None):
        self.calls.append(url)
        if isinstance(self.payload, BaseException):
            raise self.payload
        return self.payload


class _RecordingEmitter:
    def __init__(self) -> None:
        self.debug_enabled = False
        self.warnings: list[str] = []
        self.events: list[tuple[str, dict]] = []

    def warning(self, message: str, exc: BaseException | None = None) -> None:
        self.warnings.append(message)

    def error(self, message: str, exc: BaseException | None = None) -> None:  # pragma: no cover
        raise AssertionError(f"error emitted unexpectedly: {message}") from exc

    def event(self, name: str, payload: dict) -> None:
        self.events.append((name, dict(payload)))


def _cache(tmp_path: Path, *, reduction: bool = False, fmt: str = "webp", emitter=None) -> AssetCache:
    return AssetCache(
        tmp_path / "cache",
        reduction=ImageReductionConfig(enable=reduction, format=fmt),
        emitter=emitter or _RecordingEmitter(),
    )


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        (b"\xff\xd8\xff\xe0rest", "jpg"),
        (b"\x89PNG\r\n\x1a\n", "png"),
        (b"GIF89a", "gif"),
        (b"BM\x00\x00", "bmp"),
        (b"RIFF\x10\x00\x00\x00WEBPVP8 ", "webp"),
        (b"\x00\x00\x00\x1cftypavif", "avif"),
        (b"\x00\x00\x00\x20ftypavif", "avif"),
    ],
)
def test_detect_image_extension_matches_signatures(payload: bytes, expected: str) -> None:
    assert detect_image_extension(payload) == expected


def test_detect_image_extension_rejects_unknown_payloads() -> None:
    with pytest.raises(UnknownImageFormatError):
        detect_image_extension(b"<svg xmlns='http://www.w3.org/2000/svg'/>")
    with pytest.raises(UnknownImageFormatError):
        detect_image_extension(b"")


def test_asset_key_hashes_decoded_url() -> None:
    encoded = asset_key("https://example.com/caf%C3%A9.png")
    plain = asset_key("https://example.com/café.png")

    assert encoded == plain
    assert encoded == sha256("https://example.com/café.png".encode()).hexdigest()


def test_asset_key_distinguishes_urls_that_decode_differently() -> None:
    assert asset_key("https://example.com/a%2Fb") != asset_key("https://example.com/a/b")
    assert asset_key("https://example.com/a%20b") != asset_key("https://example.com/a+b")


def test_asset_key_falls_back_to_raw_url_when_decoding_fails() -> None:
    url = "https://example.com/%E6%97.png"
    assert asset_key(url) == sha256(url.encode()).hexdigest()


def test_reencode_image_produces_webp() -> None:
    payload = reencode_image(_png_bytes(), "webp")
    assert detect_image_extension(payload) == "webp"


def test_reencode_image_flattens_alpha_for_jpeg() -> None:
    buffer = BytesIO()
    Image.new("RGBA", (4, 4), (0, 0, 0, 0)).save(buffer, format="PNG")
    assert detect_image_extension(reencode_image(buffer.getvalue(), "jpg")) == "jpg"


def test_reencode_image_wraps_pillow_failures() -> None:
    with pytest.raises(ImageConversionError):
        reencode_image(b"definitely not an image", "webp")


def test_materialize_fetches_each_url_once(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    downloader = _FakeDownloader(_png_bytes())
    monkeypatch.setattr(assets, "fetch_bytes", downloader)
    cache = _cache(tmp_path)

    async def scenario() -> tuple[str | None, str | None]:
        first = await cache.materialize("https://img.example/logo.png")
        second = await cache.materialize("https://img.example/logo.png")
        return first, second

    first, second = asyncio.run(scenario())

    expected = sha256(b"https://img.example/logo.png").hexdigest() + ".png"
    assert first == second == expected
    assert downloader.calls == ["https://img.example/logo.png"]
    assert (tmp_path / "cache" / expected).read_bytes() == _png_bytes()


def test_materialize_reuses_files_from_previous_runs(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    downloader = _FakeDownloader(_png_bytes())
    monkeypatch.setattr(assets, "fetch_bytes", downloader)

    first = asyncio.run(_cache(tmp_path).materialize("https://img.example/a.png"))
    emitter = _RecordingEmitter()
    second = asyncio.run(_cache(tmp_path, emitter=emitter).materialize("https://img.example/a.png"))

    assert first == second
    assert len(downloader.calls) == 1
    assert [name for name, _ in emitter.events] == ["asset_fetch_cached"]


def test_materialize_shares_inflight_downloads(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    downloader = _FakeDownloader(_png_bytes())
    monkeypatch.setattr(assets, "fetch_bytes", downloader)
    cache = _cache(tmp_path)

    async def scenario() -> list[str | None]:
        return await asyncio.gather(
            *(cache.materialize("https://img.example/shared.png") for _ in range(5))
        )

    results = asyncio.run(scenario())

    assert len(set(results)) == 1
    assert results[0] is not None
    assert len(downloader.calls) == 1


def test_materialize_names_files_after_reencoded_content(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setattr(assets, "fetch_bytes", _FakeDownloader(_png_bytes()))

    filename = asyncio.run(
        _cache(tmp_path, reduction=True).materialize("https://img.example/photo.jpg")
    )

    assert filename is not None
    assert filename.endswith(".webp")
    assert ".jpg" not in filename
    assert (tmp_path / "cache" / filename).read_bytes()[:4] == b"RIFF"


def test_materialize_returns_none_when_reencoding_fails(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setattr(assets, "fetch_bytes", _FakeDownloader(b"<html>not an image</html>"))
    emitter = _RecordingEmitter()

    result = asyncio.run(
        _cache(tmp_path, reduction=True, emitter=emitter).materialize("https://img.example/x")
    )

    assert result is None
    assert list((tmp_path / "cache").iterdir()) == []
    assert any("Failed to convert image to webp" in message for message in emitter.warnings)


def test_materialize_returns_none_for_unknown_signatures(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setattr(assets, "fetch_bytes", _FakeDownloader(b"\x00\x01\x02 unknown payload"))
    emitter = _RecordingEmitter()

    result = asyncio.run(_cache(tmp_path, emitter=emitter).materialize("https://img.example/x"))

    assert result is None
    assert list((tmp_path / "cache").iterdir()) == []
    assert any("Unsupported image format" in message for message in emitter.warnings)


def test_materialize_returns_none_when_download_fails(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setattr(assets, "fetch_bytes", _FakeDownloader(AssetFetchError("timed out")))
    cache = _cache(tmp_path)

    result = asyncio.run(cache.materialize("https://img.example/slow.png"))

    assert result is None
    assert list((tmp_path / "cache").iterdir()) == []


def test_failed_downloads_are_retried_on_next_request(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    downloader = _FakeDownloader(AssetFetchError("offline"))
    monkeypatch.setattr(assets, "fetch_bytes", downloader)
    cache = _cache(tmp_path)

    async def scenario() -> str | None:
        assert await cache.materialize("https://img.example/a.png") is None
        downloader.payload = _png_bytes()
        return await cache.materialize("https://img.example/a.png")

    assert asyncio.run(scenario()) is not None
    assert len(downloader.calls) == 2


def test_materialize_rejects_unparseable_urls(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    downloader = _FakeDownloader(_png_bytes())
    monkeypatch.setattr(assets, "fetch_bytes", downloader)
    emitter = _RecordingEmitter()

    result = asyncio.run(_cache(tmp_path, emitter=emitter).materialize("not a url"))

    assert result is None
    assert downloader.calls == []
    assert not (tmp_path / "cache").exists()
    assert emitter.warnings


def test_find_cached_asset_ignores_temporary_files(tmp_path: Path) -> None:
    (tmp_path / ".abc.png.123.tmp").write_bytes(b"partial")
    assert assets.find_cached_asset(tmp_path, "abc") is None
    (tmp_path / "abc.png").write_bytes(b"done")
    assert assets.find_cached_asset(tmp_path, "abc") == "abc.png"
    assert assets.find_cached_asset(tmp_path / "missing", "abc") is None


def test_write_asset_leaves_no_temporary_files(tmp_path: Path) -> None:
    target = assets.write_asset(tmp_path, "abc.png", b"payload")
    assert target.read_bytes() == b"payload"
    assert [path.name for path in tmp_path.iterdir()] == ["abc.png"]


def test_reencode_image_wraps_decompression_bombs() -> None:
    with pytest.raises(ImageConversionError):
        reencode_image(_oversized_png(), "webp")


def test_materialize_returns_none_for_oversized_images(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setattr(assets, "fetch_bytes", _FakeDownloader(_oversized_png()))
    emitter = _RecordingEmitter()

    result = asyncio.run(
        _cache(tmp_path, reduction=True, emitter=emitter).materialize(
            "https://img.example/huge.png"
        )
    )

    assert result is None
    assert list((tmp_path / "cache").iterdir()) == []
    assert any("Failed to convert image to webp" in message for message in emitter.warnings)


def test_materialize_returns_none_for_unexpected_errors(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setattr(assets, "fetch_bytes", _FakeDownloader(RuntimeError("boom")))
    emitter = _RecordingEmitter()

    result = asyncio.run(_cache(tmp_path, emitter=emitter).materialize("https://img.example/a"))

    assert result is None
    assert any("boom" in message for message in emitter.warnings)


def test_materialize_returns_none_when_cache_directory_is_unusable(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    site = tmp_path / "site"
    site.write_text("not a directory", encoding="utf-8")
    downloader = _FakeDownloader(_png_bytes())
    monkeypatch.setattr(assets, "fetch_bytes", downloader)
    emitter = _RecordingEmitter()
    cache = AssetCache(site / "link-card", emitter=emitter)

    result = asyncio.run(cache.materialize("https://img.example/a.png"))

    assert result is None
    assert downloader.calls == []
    assert any("Failed to store image" in message for message in emitter.warnings)


def test_find_cached_asset_treats_unreadable_directories_as_misses(tmp_path: Path) -> None:
    regular_file = tmp_path / "site"
    regular_file.write_text("x", encoding="utf-8")

    assert assets.find_cached_asset(regular_file, "abc") is None
    assert assets.find_cached_asset(regular_file / "link-card", "abc") is None
