"""HTTP helpers with cross-platform TLS guidance."""

from __future__ import annotations

from collections.abc import Mapping

import requests

from .exceptions import AssetFetchError


DEFAULT_TIMEOUT = 10.0
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/74.0.3729.169 Safari/537.36"
)


class TLSCertificateError(AssetFetchError):
    """Raised when TLS certificate verification fails during downloads."""


def _tls_help(url: str) -> str:
    return (
        "TLS certificate verification failed while downloading "
        f"'{url}'. On macOS run the Python 'Install Certificates.command' "
        "(from the python.org installer). On Windows run 'py -m pip install --upgrade certifi'. "
        "On Linux install your 'ca-certificates' package (apt/yum/apk). "
        "Also check system date/time and any proxy or corporate SSL inspection."
    )


def http_get(
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    timeout: float | None = DEFAULT_TIMEOUT,
    user_agent: str | None = None,
) -> requests.Response:
    """GET a URL, raising :class:`AssetFetchError` for any transport or status failure."""
    request_headers = {"User-Agent": user_agent or DEFAULT_USER_AGENT}
    request_headers.update(headers or {})
    try:
        response = requests.get(
            url,
            headers=request_headers,
            timeout=timeout,
            allow_redirects=True,
        )
        response.raise_for_status()
    except requests.exceptions.SSLError as exc:
        raise TLSCertificateError(_tls_help(url)) from exc
    except requests.RequestException as exc:
        raise AssetFetchError(f"Failed to download '{url}': {exc}") from exc
    return response


def fetch_bytes(
    url: str,
    *,
    timeout: float | None = DEFAULT_TIMEOUT,
    user_agent: str | None = None,
) -> bytes:
    """Return the raw body of a successful GET request."""
    return http_get(url, timeout=timeout, user_agent=user_agent).content


def fetch_text(
    url: str,
    *,
    timeout: float | None = DEFAULT_TIMEOUT,
    user_agent: str | None = None,
) -> tuple[str, str]:
    """Return the decoded body and the final URL after redirects."""
    response = http_get(
        url,
        headers={"Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8"},
        timeout=timeout,
        user_agent=user_agent,
    )
    if response.encoding is None or response.encoding.lower() == "iso-8859-1":
        response.encoding = response.apparent_encoding
    return response.text, response.url or url


__all__ = [
    "DEFAULT_TIMEOUT",
    "DEFAULT_USER_AGENT",
    "TLSCertificateError",
    "fetch_bytes",
    "fetch_text",
    "http_get",
]
