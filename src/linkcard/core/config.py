"""Configuration models used by the link card pipeline.

LinkCardConfig

`cache` (`bool`)
: Download favicons and preview images into the asset cache and reference the
  local copies. When `False` the cards point at the remote URLs.

`shorten_url` (`bool`, alias `shortenUrl`)
: Display the hostname instead of the full URL below the card title.

`image_reduction` (`ImageReductionConfig`, alias `imageReduction`)
: Re-encode cached images before they are written to disk.

`base_directory` (`Path`, alias `saveDirectory`)
: Root of the published site. Cached assets are stored under
  `<base_directory>/<output_path>`.

`output_path` (`str`, alias `outputDirectory`)
: Public URL prefix used to reference cached assets from the card markup.

`timeout` (`float`)
: Timeout in seconds applied to every individual network request.

`user_agent` (`str`)
: `User-Agent` header sent with every request.

`favicon_service` (`str`)
: Favicon lookup URL. Every `{hostname}` is replaced with the link's host;
  other braces are kept verbatim.

ImageReductionConfig

`enable` (`bool`)
: Toggle re-encoding of cached images.

`format` (`str`)
: Pillow format name targeted by the re-encoding (`webp`, `avif`, `png`, ...).
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
import posixpath
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
import yaml

from .http import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT


DEFAULT_FAVICON_SERVICE = "https://www.google.com/s2/favicons?domain={hostname}"
DEFAULT_OUTPUT_PATH = "/link-card/"
DEFAULT_IMAGE_FORMAT = "webp"


class ImageReductionConfig(BaseModel):
    """Settings controlling how cached images are re-encoded."""

    model_config = ConfigDict(extra="forbid")

    enable: bool = True
    format: str = DEFAULT_IMAGE_FORMAT

    @field_validator("format")
    @classmethod
    def normalise_format(cls, value: str) -> str:
        cleaned = value.strip().lower().lstrip(".")
        if not cleaned:
            raise ValueError("Image reduction format must not be empty.")
        return cleaned


class LinkCardConfig(BaseModel):
    """Options recognised by the link card transform."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    cache: bool = False
    shorten_url: bool = Field(default=False, alias="shortenUrl")
    image_reduction: ImageReductionConfig = Field(
        default_factory=ImageReductionConfig, alias="imageReduction"
    )
    base_directory: Path = Field(default=Path("public"), alias="saveDirectory")
    output_path: str = Field(default=DEFAULT_OUTPUT_PATH, alias="outputDirectory")
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    user_agent: str = DEFAULT_USER_AGENT
    favicon_service: str = DEFAULT_FAVICON_SERVICE

    @property
    def cache_directory(self) -> Path:
        """Directory receiving cached assets."""
        relative = self.output_path.strip("/")
        base = Path(self.base_directory).expanduser()
        return base / relative if relative else base

    def public_path(self, filename: str) -> str:
        """Return the URL under which a cached asset is published."""
        return posixpath.join(self.output_path, filename)

    def favicon_url(self, host: str) -> str:
        """Return the favicon service URL for a given host."""
        return self.favicon_service.replace("{hostname}", host)


def load_config(source: Path | str | Mapping[str, Any] | None = None) -> LinkCardConfig:
    """Build a :class:`LinkCardConfig` from a YAML file or a mapping.

    A top-level ``linkcard`` key is unwrapped so the options can live in a
    shared configuration file.
    """
    if source is None:
        return LinkCardConfig()
    if isinstance(source, Mapping):
        data: Any = dict(source)
    else:
        path = Path(source).expanduser()
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, Mapping):
            raise ValueError(f"Configuration file '{path}' must contain a mapping.")
    if isinstance(data.get("linkcard"), Mapping):
        data = data["linkcard"]
    return LinkCardConfig.model_validate(dict(data))


__all__ = [
    "DEFAULT_FAVICON_SERVICE",
    "DEFAULT_IMAGE_FORMAT",
    "DEFAULT_OUTPUT_PATH",
    "ImageReductionConfig",
    "LinkCardConfig",
    "load_config",
]
