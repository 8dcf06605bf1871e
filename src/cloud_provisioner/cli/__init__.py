"""Command-line entry point for cloud-provisioner."""

from __future__ import annotations

import logging
import os
import sys

import typer

from cloud_provisioner import __version__

app = typer.Typer(
    name="cloud-provisioner",
    no_args_is_help=True,
    add_completion=False,
)

# Apply runs operations on "apply_N" worker threads; keep the thread visible.
_LOG_FORMAT = "%(levelname)s [%(threadName)s] %(name)s: %(message)s"
_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
# -vvv also shows HTTP traffic of the remote client.
_WIRE_LOGGERS = ("urllib3",)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cloud-provisioner {__version__}")
        raise typer.Exit


def _log_level(verbose: int) -> int | None:
    """Level for the ``cloud_provisioner`` logger, or None to leave logging alone.

    ``CLOUD_LOG`` wins over ``-v`` flags. An unrecognised value falls back to
    INFO with a warning on stderr.
    """
    env_level = os.environ.get("CLOUD_LOG", "").strip().upper()
    if env_level:
        if env_level in _VALID_LEVELS:
            return logging.getLevelName(env_level)
        print(
            f"WARNING: invalid CLOUD_LOG level '{env_level}', "
            f"expected one of {', '.join(sorted(_VALID_LEVELS))}; defaulting to INFO",
            file=sys.stderr,
        )
        return logging.INFO
    if verbose <= 0:
        return None
    return logging.INFO if verbose == 1 else logging.DEBUG


def _configure_logging(verbose: int) -> None:
    level = _log_level(verbose)
    if level is None:
        return
    logging.basicConfig(
        level=logging.WARNING,
        format=_LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("cloud_provisioner").setLevel(level)
    if verbose >= 3:
        for name in _WIRE_LOGGERS:
            logging.getLogger(name).setLevel(logging.DEBUG)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase log verbosity (-v info, -vv debug, -vvv debug with HTTP traffic).",
    ),
) -> None:
    """Plan and apply multi-tier cloud topologies from a YAML file."""
    _ = version
    _configure_logging(verbose)


# Commands import the app above.
from cloud_provisioner.cli import commands as _commands  # noqa: E402, F401
