"""Typer application wiring for the linkcard CLI."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any

from rich.console import Console
import typer

from linkcard.core.config import LinkCardConfig, load_config
from linkcard.document import render_markdown
from linkcard.version import get_version

from .diagnostics import CliEmitter
from .state import debug_enabled, emit_error, get_cli_state, render_message, set_cli_state


app = typer.Typer(
    help="Render Markdown to HTML, turning bare links into link cards.",
    context_settings={"help_option_names": ["--help"]},
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(get_version())
        raise typer.Exit()


def _configure_logging(verbosity: int, console: Console) -> None:
    from rich.logging import RichHandler

    level = logging.WARNING
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, show_time=False)],
        force=True,
    )


def build_config(
    config_path: Path | None,
    *,
    cache: bool | None = None,
    shorten_url: bool | None = None,
    image_reduction: bool | None = None,
    image_format: str | None = None,
    base_directory: Path | None = None,
    output_path: str | None = None,
) -> LinkCardConfig:
    """Load the configuration file and apply command line overrides."""
    config = load_config(config_path)
    updates: dict[str, Any] = {}
    if cache is not None:
        updates["cache"] = cache
    if shorten_url is not None:
        updates["shorten_url"] = shorten_url
    if base_directory is not None:
        updates["base_directory"] = base_directory
    if output_path is not None:
        updates["output_path"] = output_path

    reduction: dict[str, Any] = {}
    if image_reduction is not None:
        reduction["enable"] = image_reduction
    if image_format is not None:
        reduction["format"] = image_format
    if reduction:
        merged = config.image_reduction.model_dump() | reduction
        updates["image_reduction"] = merged

    if not updates:
        return config
    return LinkCardConfig.model_validate(config.model_dump() | updates)


@app.command()
def render(
    input_path: Annotated[
        Path,
        typer.Argument(
            exists=True,
            dir_okay=False,
            readable=True,
            help="Markdown file to convert.",
        ),
    ],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write HTML to this file instead of stdout."),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", exists=True, dir_okay=False, help="YAML configuration file."),
    ] = None,
    cache: Annotated[
        bool | None,
        typer.Option("--cache/--no-cache", help="Store favicons and preview images locally."),
    ] = None,
    shorten_url: Annotated[
        bool | None,
        typer.Option("--shorten-url/--full-url", help="Display hostnames instead of full URLs."),
    ] = None,
    image_reduction: Annotated[
        bool | None,
        typer.Option(
            "--image-reduction/--no-image-reduction",
            help="Re-encode cached images before writing them.",
        ),
    ] = None,
    image_format: Annotated[
        str | None,
        typer.Option("--image-format", help="Target format of the re-encoding (e.g. webp)."),
    ] = None,
    base_directory: Annotated[
        Path | None,
        typer.Option("--base-directory", help="Directory of the published site."),
    ] = None,
    output_path: Annotated[
        str | None,
        typer.Option("--output-path", help="Public URL prefix of cached assets."),
    ] = None,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase diagnostic output."),
    ] = 0,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Show full tracebacks on failure."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show the version and exit.",
        ),
    ] = False,
) -> None:
    """Convert a Markdown file to HTML with link cards."""
    state = set_cli_state(verbosity=verbose, debug=debug)
    _configure_logging(state.verbosity, state.err_console)
    config = build_config(
        config_path,
        cache=cache,
        shorten_url=shorten_url,
        image_reduction=image_reduction,
        image_format=image_format,
        base_directory=base_directory,
        output_path=output_path,
    )
    text = input_path.read_text(encoding="utf-8")
    emitter = CliEmitter(state)
    html = render_markdown(text, config, emitter=emitter)
    render_message("info", emitter.summary())

    if output is None:
        typer.echo(html)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(html + "\n", encoding="utf-8")


def main() -> None:
    """Entry point compatible with console scripts."""
    try:
        app()
    except typer.Exit:
        raise
    except KeyboardInterrupt as exc:
        if debug_enabled():
            raise
        emit_error("Operation cancelled by user.", exception=exc)
        raise typer.Exit(code=1) from exc
    except SystemExit:
        raise
    except Exception as exc:  # pragma: no cover - defensive catch-all
        state = get_cli_state()
        if state.show_tracebacks:
            from rich.traceback import Traceback

            tb = Traceback.from_exception(
                type(exc),
                exc,
                exc.__traceback__,
                show_locals=state.verbosity >= 2,
            )
            state.err_console.print(tb)
        else:
            emit_error(str(exc), exception=exc)
        raise typer.Exit(code=1) from exc


__all__ = ["app", "build_config", "main"]
