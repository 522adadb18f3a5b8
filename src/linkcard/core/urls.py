"""URL detection, normalisation and percent-decoding helpers."""

from __future__ import annotations

import re
from urllib.parse import urlsplit, urlunsplit


URL_PATTERN = re.compile(r"(https?://|www(?=\.))([-.\w]+)([^ \t\r\n]*)")

_ESCAPE_RUN = re.compile(r"(?:%[0-9A-Fa-f]{2})+")
# Escapes of these characters survive decoding so the URL keeps its structure.
_RESERVED = frozenset(";/?:@&=+$,#")
_SCHEMES = ("http", "https")


def find_urls(text: str) -> list[str]:
    """Return every URL-shaped substring of ``text`` in order of appearance."""
    return [match.group(0) for match in URL_PATTERN.finditer(text)]


def with_scheme(url: str) -> str:
    """Prefix bare ``www.`` hosts with ``https://``."""
    if url.lower().startswith("www."):
        return f"https://{url}"
    return url


def normalise_url(url: str) -> str:
    """Return a canonical ``http(s)`` URL or raise :class:`ValueError`.

    The scheme and host are lower-cased and an empty path becomes ``/`` so
    that ``https://Example.com`` and ``https://example.com/`` share a key.
    """
    candidate = url.strip()
    parts = urlsplit(candidate)
    scheme = parts.scheme.lower()
    if scheme not in _SCHEMES:
        raise ValueError(f"Unsupported URL scheme in '{url}'.")
    if not parts.hostname:
        raise ValueError(f"URL '{url}' has no host.")
    # Accessing the port validates it.
    _ = parts.port
    netloc = parts.netloc
    host_start = netloc.rfind("@") + 1
    netloc = netloc[:host_start] + netloc[host_start:].lower()
    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, parts.fragment))


def hostname(url: str) -> str:
    """Return the host component of a URL, or an empty string."""
    return urlsplit(url).hostname or ""


def decode_uri(value: str) -> str:
    """Decode percent-escapes the way browsers' ``decodeURI`` does.

    Escapes of reserved characters are preserved verbatim. Malformed UTF-8
    sequences raise :class:`UnicodeDecodeError`.
    """

    def _decode_run(match: re.Match[str]) -> str:
        run = match.group(0)
        pieces: list[str] = []
        pending = bytearray()
        for index in range(0, len(run), 3):
            escape = run[index : index + 3]
            byte = int(escape[1:], 16)
            if byte < 0x80 and chr(byte) in _RESERVED:
                if pending:
                    pieces.append(pending.decode("utf-8"))
                    pending.clear()
                pieces.append(escape)
                continue
            pending.append(byte)
        if pending:
            pieces.append(pending.decode("utf-8"))
        return "".join(pieces)

    return _ESCAPE_RUN.sub(_decode_run, value)


__all__ = [
    "URL_PATTERN",
    "decode_uri",
    "find_urls",
    "hostname",
    "normalise_url",
    "with_scheme",
]
