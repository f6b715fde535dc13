"""Main CLI entry point for chrome-gather using Typer."""

from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .config import (
    build_cli_overrides,
    load_configuration,
    print_configuration,
    validate_configuration,
)
from .runner import CaptureRunner, ExitCode, configure_logging, replay_events
from .. import __version__
from ..har.synthesizer import SynthesisError
from ..models.capture import OutputTarget


app = typer.Typer(
    name="gather",
    help="Load a page in headless Chromium and capture its HAR, screenshot and script result",
    add_completion=False,
)


def version_callback(value: bool):
    """Show version information."""
    if value:
        typer.echo(f"chrome-gather v{__version__}")
        raise typer.Exit()


def _log_level(verbose: bool, quiet: bool) -> Optional[str]:
    if verbose:
        return "DEBUG"
    if quiet:
        return "WARNING"
    return None


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit")
    ] = None,
):
    """
    chrome-gather: capture a web page through the Chrome debugging protocol.
    """


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"chrome-gather v{__version__}")


@app.command()
def capture(
    url: Annotated[str, typer.Argument(help="URL to load")],

    # Browser options
    width: Annotated[
        Optional[int],
        typer.Option("--width", "-w", help="Browser width in pixels [default: 1200]")
    ] = None,

    height: Annotated[
        Optional[int],
        typer.Option("--height", "-h", help="Browser height in pixels [default: 800]")
    ] = None,

    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Remote debugging port to use for Chrome [default: 9222]")
    ] = None,

    timeout: Annotated[
        Optional[int],
        typer.Option("--timeout", "-t", help="Wait this many milliseconds for the page to load [default: 60000]")
    ] = None,

    # Outputs
    har: Annotated[
        Optional[str],
        typer.Option("--har", "-o", help="File to write HAR to, or 'false' [default: capture.har]")
    ] = None,

    screenshot: Annotated[
        Optional[str],
        typer.Option("--screenshot", "-s", help="File to write the screenshot to, or 'false' [default: capture.png]")
    ] = None,

    events: Annotated[
        Optional[str],
        typer.Option("--events", "-e", help="File to write the raw event log to")
    ] = None,

    js: Annotated[
        Optional[str],
        typer.Option("--js", "-c", help="JavaScript to evaluate in page context")
    ] = None,

    jsresult: Annotated[
        Optional[str],
        typer.Option("--jsresult", "-r", help="File to write the result of running --js to")
    ] = None,

    # Configuration
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", help="Path to configuration file (YAML or JSON)")
    ] = None,

    log_file: Annotated[
        Optional[Path],
        typer.Option("--log-file", help="Also write log records to this file")
    ] = None,

    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug logging")
    ] = False,

    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only log warnings and errors")
    ] = False,

    print_config: Annotated[
        bool,
        typer.Option("--print-config", help="Print effective configuration and exit")
    ] = False,
):
    """
    Capture a page.

    Examples:

        # HAR and screenshot with default file names
        gather capture https://example.com

        # Screenshot only, larger viewport
        gather capture --har false -w 1600 -h 1000 https://example.com

        # Run a script and keep the raw event log
        gather capture -c "document.title" -r title.json -e events.json https://example.com
    """
    if verbose and quiet:
        typer.echo("❌ --verbose and --quiet are mutually exclusive", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    try:
        cli_overrides = build_cli_overrides(
            width=width,
            height=height,
            port=port,
            timeout=timeout,
            har=har,
            screenshot=screenshot,
            events=events,
            js=js,
            jsresult=jsresult,
            log_level=_log_level(verbose, quiet),
            log_file=log_file,
        )

        full_config = load_configuration(
            config_file=config_file,
            cli_overrides=cli_overrides,
            search_paths=[Path.cwd()]
        )

        if not print_config:
            validation_errors = validate_configuration(full_config)
            if validation_errors:
                for error in validation_errors:
                    typer.echo(f"❌ Configuration error: {error}", err=True)
                raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"❌ Configuration error: {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    if print_config:
        typer.echo("# Effective Configuration")
        typer.echo("# Loaded from: " + " -> ".join(full_config.loaded_from))
        typer.echo(print_configuration(full_config, "yaml"))
        raise typer.Exit()

    configure_logging(full_config.logging.level, full_config.logging.log_file)

    exit_code = CaptureRunner(full_config).run_sync(url)
    raise typer.Exit(code=exit_code.value)


@app.command()
def replay(
    events_file: Annotated[
        Path,
        typer.Argument(help="Event log written by 'capture --events'", exists=True, dir_okay=False)
    ],

    url: Annotated[str, typer.Argument(help="URL the event log was captured from")],

    har: Annotated[
        str,
        typer.Option("--har", "-o", help="File to write HAR to")
    ] = "capture.har",

    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug logging")
    ] = False,

    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only log warnings and errors")
    ] = False,
):
    """
    Rebuild a HAR file from a previously dumped event log, without a browser.
    """
    configure_logging(_log_level(verbose, quiet) or "INFO")

    try:
        target = OutputTarget.parse(har)
        replay_events(events_file, url, target)
    except ValueError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)
    except SynthesisError as e:
        typer.echo(f"❌ Cannot build HAR: {e}", err=True)
        raise typer.Exit(code=ExitCode.CAPTURE_ERROR.value)

    raise typer.Exit(code=ExitCode.SUCCESS.value)


if __name__ == "__main__":
    app()
