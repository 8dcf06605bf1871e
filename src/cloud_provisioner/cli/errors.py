"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from cloud_provisioner.config.loader import ConfigError
    from cloud_provisioner.core.errors import RemoteError
    from cloud_provisioner.core.state import StateVersionError
    from cloud_provisioner.engine.errors import (
        DependencyCycleError,
        DiffConflictError,
        PreventDestroyError,
        StateLockError,
        StateWorkspaceMismatchError,
        UnresolvedReferenceError,
        ValidationError,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, UnresolvedReferenceError):
        _err(f"Invalid reference: {exc}", fg=fg)
    elif isinstance(exc, DependencyCycleError):
        _err(f"Dependency cycle: {' -> '.join(exc.cycle)}", fg=fg)
    elif isinstance(exc, PreventDestroyError):
        _err(f"Refusing to destroy: {exc}", fg=fg)
    elif isinstance(exc, DiffConflictError):
        _err(f"Plan is stale: {exc}", fg=fg)
    elif isinstance(exc, (StateWorkspaceMismatchError, StateVersionError)):
        _err(f"State mismatch: {exc}", fg=fg)
    elif isinstance(exc, StateLockError):
        _err(f"State lock: {exc}", fg=fg)
    elif isinstance(exc, RemoteError):
        _err(f"Remote API error: {exc}", fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
