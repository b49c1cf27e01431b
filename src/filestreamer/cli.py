"""
Command-line interface for filestreamer using Click.

``filestreamer cat`` streams files to stdout and closes each one at end of
data; ``filestreamer follow`` keeps reading a pipe or growing file until
SIGINT/SIGTERM, then detaches and closes.
"""

import asyncio
import dataclasses
import json
import signal
import sys
from pathlib import Path
from typing import BinaryIO, Dict, Any, Optional, Sequence

import click

from .app_logger import set_default_logger
from .config import MAX_STREAMABLE_BUFFER_SIZE, StreamerConfig
from .errors import StreamerError, WatchFailure
from .events import SessionEvent, SessionEventType
from .file_streamer import FileStreamer
from .logging_config import (
    FORMAT_NAMES,
    ConfigurableAppLogger,
    HandlerConfig,
    LoggingConfig,
    LogFormat,
    LogHandler,
    VerbosityLevel,
)


def _configure_logging(
    verbose: int, quiet: bool, log_level: Optional[str], log_format: str, log_file: Optional[str]
) -> None:
    """Configure the default logger from CLI options."""
    config = LoggingConfig()

    if quiet:
        config.verbosity = VerbosityLevel.QUIET
    elif verbose >= 1:
        config.verbosity = VerbosityLevel.VERBOSE

    if log_level:
        config.global_level = log_level.upper()

    config.global_format = FORMAT_NAMES.get(log_format.lower(), LogFormat.SIMPLE)

    if log_file:
        config.handlers = [
            HandlerConfig(type=LogHandler.CONSOLE),
            HandlerConfig(type=LogHandler.ROTATING_FILE, filename=log_file),
        ]

    set_default_logger(ConfigurableAppLogger(config))


def version_callback(ctx, _, value):
    """Print the version and exit."""
    if not value or ctx.resilient_parsing:
        return
    from . import __version__

    click.echo(f"filestreamer version {__version__}")
    ctx.exit()


def watch_close(streamer: FileStreamer) -> asyncio.Future:
    """Future resolved when the session closes, failed if closing fails."""
    result = asyncio.get_running_loop().create_future()

    def on_closed(event: SessionEvent) -> None:
        if not result.done():
            result.set_result(event)

    def on_error(event: SessionEvent) -> None:
        # A vanished file does not stop a descriptor that is still readable
        if not isinstance(event.error, WatchFailure) and not result.done():
            result.set_exception(event.error)

    def unsubscribe(_) -> None:
        streamer.off(SessionEventType.CLOSED, on_closed)
        streamer.off(SessionEventType.ERROR, on_error)

    streamer.on(SessionEventType.CLOSED, on_closed).on(SessionEventType.ERROR, on_error)
    result.add_done_callback(unsubscribe)
    return result


async def cat_files(paths: Sequence[Path], config: StreamerConfig, sink: BinaryIO) -> Dict[str, Any]:
    """
    Stream each file in turn to ``sink``, closing it at end of data.

    Returns:
        Stream metrics accumulated over all files
    """
    config = StreamerConfig(
        chunk_size=config.chunk_size,
        error_on_missing=config.error_on_missing,
        close_on_eof=True,
    )
    streamer = FileStreamer(config)
    try:
        for path in paths:
            await streamer.open_async(path)
            closed = watch_close(streamer)
            try:
                await streamer.stream().pipe_to(sink)
            except BaseException:
                closed.cancel()
                raise
            await closed
    finally:
        if streamer.is_open:
            await streamer.promise("close")
    return streamer.metrics.get_metrics()


async def follow_file(
    path: Path, config: StreamerConfig, sink: BinaryIO, stop: asyncio.Event
) -> Dict[str, Any]:
    """
    Stream ``path`` to ``sink`` past end of data until ``stop`` is set.

    Returns:
        Stream metrics of the session
    """
    config = StreamerConfig(
        chunk_size=config.chunk_size,
        error_on_missing=config.error_on_missing,
        close_on_eof=False,
        eof_poll_interval=config.eof_poll_interval,
    )
    streamer = FileStreamer(config)
    await streamer.open_async(path)
    try:
        pump = asyncio.ensure_future(streamer.stream().pipe_to(sink))
        stopped = asyncio.ensure_future(stop.wait())
        await asyncio.wait({pump, stopped}, return_when=asyncio.FIRST_COMPLETED)
        stopped.cancel()
        streamer.unstream()
        await pump
    finally:
        await streamer.promise("close")
    return streamer.metrics.get_metrics()


async def _follow_until_signalled(path: Path, config: StreamerConfig, sink: BinaryIO) -> Dict[str, Any]:
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)
    try:
        return await follow_file(path, config, sink, stop)
    finally:
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)


def _session_config(options: Dict[str, Any], **defaults) -> StreamerConfig:
    """Environment configuration with the options given on the command line applied on top."""
    try:
        config = StreamerConfig.from_env(**defaults)
    except ValueError as e:
        raise click.UsageError(f"invalid FILESTREAMER_* environment setting: {e}")
    given = {name: value for name, value in options.items() if value is not None}
    return dataclasses.replace(config, **given)


def _report(metrics: Dict[str, Any], show_stats: bool) -> None:
    if show_stats:
        click.echo(json.dumps(metrics, indent=2, sort_keys=True), err=True)


def _run(coro, verbose: int) -> Dict[str, Any]:
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        sys.exit(0)
    except (StreamerError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        if verbose:
            import traceback

            click.echo(traceback.format_exc(), err=True)
        sys.exit(1)


@click.group()
@click.option("--verbose", "-v", count=True, help="Increase verbosity (debug output)")
@click.option("--quiet", "-q", is_flag=True, help="Reduce output to warnings and errors only")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Set explicit log level (overrides verbose/quiet)",
)
@click.option(
    "--log-format",
    type=click.Choice(["json", "simple", "detailed"], case_sensitive=False),
    default="simple",
    help="Log output format",
)
@click.option("--log-file", type=click.Path(), help="Write logs to file (in addition to stderr)")
@click.option(
    "--version",
    is_flag=True,
    expose_value=False,
    is_eager=True,
    callback=version_callback,
    help="Show version and exit",
)
@click.help_option("--help", "-h")
@click.pass_context
def main(ctx, verbose: int, quiet: bool, log_level: str, log_format: str, log_file: str) -> None:
    """
    Stream regular files and named pipes to stdout.

    Examples:

        filestreamer cat notes.txt data.bin

        filestreamer -v follow /tmp/my.fifo --chunk-size 128
    """
    _configure_logging(verbose, quiet, log_level, log_format, log_file)
    ctx.obj = {"verbose": verbose}


@main.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--chunk-size",
    type=click.IntRange(1, MAX_STREAMABLE_BUFFER_SIZE),
    help=f"Bytes requested per read [default: $FILESTREAMER_CHUNK_SIZE or {MAX_STREAMABLE_BUFFER_SIZE}]",
)
@click.option(
    "--error-on-missing/--ignore-missing",
    default=True,
    help="Report files that disappear while streaming",
)
@click.option("--stats", is_flag=True, help="Print stream metrics to stderr")
@click.pass_context
def cat(ctx, files, chunk_size: Optional[int], error_on_missing: bool, stats: bool) -> None:
    """Stream FILES to stdout one after another."""
    config = _session_config({"chunk_size": chunk_size, "error_on_missing": error_on_missing})
    sink = sys.stdout.buffer
    verbose = ctx.obj["verbose"]
    _report(_run(cat_files(files, config, sink), verbose), stats)


@main.command()
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--chunk-size",
    type=click.IntRange(1, MAX_STREAMABLE_BUFFER_SIZE),
    help="Bytes requested per read [default: $FILESTREAMER_CHUNK_SIZE or 128]",
)
@click.option(
    "--poll-interval",
    type=click.FloatRange(min=0.0),
    help="Seconds to wait after reaching end of data [default: $FILESTREAMER_EOF_POLL_INTERVAL or 0.1]",
)
@click.option(
    "--error-on-missing/--ignore-missing",
    default=True,
    help="Report the file disappearing while streaming",
)
@click.option("--stats", is_flag=True, help="Print stream metrics to stderr")
@click.pass_context
def follow(
    ctx,
    file: Path,
    chunk_size: Optional[int],
    poll_interval: Optional[float],
    error_on_missing: bool,
    stats: bool,
) -> None:
    """Stream FILE to stdout, waiting for more data, until interrupted."""
    config = _session_config(
        {
            "chunk_size": chunk_size,
            "eof_poll_interval": poll_interval,
            "error_on_missing": error_on_missing,
        },
        chunk_size=128,
        eof_poll_interval=0.1,
    )
    sink = sys.stdout.buffer
    verbose = ctx.obj["verbose"]
    _report(_run(_follow_until_signalled(file, config, sink), verbose), stats)


if __name__ == "__main__":
    main()
