"""Markup for link cards.

The renderer does not escape anything: :class:`~linkcard.metadata.LinkMetadata`
values are already entity-encoded by the metadata fetcher.
"""

from __future__ import annotations

from jinja2 import Environment, StrictUndefined

from .metadata import LinkMetadata


CARD_TEMPLATE = """\
<div class="link-card">
<a class="link-card-container" href="{{ card.url }}">
  <div class="link-card-info">
    <div class="link-card-title">{{ card.title }}</div>
    {% if card.description %}
    <div class="link-card-description">{{ card.description }}</div>
    {% endif %}
    <div class="link-card-url-container">
      {% if card.favicon_src %}
      <img class="link-card-favicon" src="{{ card.favicon_src }}" alt="{{ card.title }} favicon" width="16" height="16" decoding="async" loading="lazy" />
      {% endif %}
      <span class="link-card-url">{{ card.display_url }}</span>
    </div>
  </div>
  {% if card.image_src %}
  <div class="link-card-image-container">
    <img class="link-card-image" src="{{ card.image_src }}" alt="{{ card.image_alt }}" decoding="async" loading="lazy" />
  </div>
  {% endif %}
</a>
</div>"""


_ENVIRONMENT = Environment(
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
)
_TEMPLATE = _ENVIRONMENT.from_string(CARD_TEMPLATE)


def render_link_card(card: LinkMetadata) -> str:
    """Return the HTML markup for a resolved link card."""
    return _TEMPLATE.render(card=card)


__all__ = ["CARD_TEMPLATE", "render_link_card"]
