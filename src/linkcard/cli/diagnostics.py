"""Route link card diagnostics to the CLI console."""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from typing import Any

from linkcard.core.diagnostics import format_event_message

from .state import CLIState, emit_error, emit_warning, get_cli_state, render_message


class CliEmitter:
    """Print pipeline diagnostics and tally what happened to each link.

    Warnings (failed cards, degraded assets) are always shown. Events such as
    ``asset_fetch`` or ``link_card`` only appear with ``-v``.
    """

    def __init__(self, state: CLIState | None = None) -> None:
        self._state = state or get_cli_state()
        self.debug_enabled = self._state.show_tracebacks
        self.counts: Counter[str] = Counter()
        self.warnings = 0

    def warning(self, message: str, exc: BaseException | None = None) -> None:
        self.warnings += 1
        emit_warning(message, exception=exc)

    def error(self, message: str, exc: BaseException | None = None) -> None:
        emit_error(message, exception=exc)

    def event(self, name: str, payload: Mapping[str, Any]) -> None:
        self.counts[name] += 1
        message = format_event_message(name, payload)
        if message:
            render_message("info", message)

    def summary(self) -> str:
        """One-line recap printed once the document is converted."""
        cards = self.counts["link_card"]
        stored = self.counts["asset_stored"]
        reused = self.counts["asset_fetch_cached"]
        text = f"{cards} link card{'s' if cards != 1 else ''} rendered"
        if stored or reused:
            text += f", {stored} image(s) downloaded, {reused} reused from cache"
        if self.warnings:
            text += f", {self.warnings} warning(s)"
        return text


__all__ = ["CliEmitter"]
