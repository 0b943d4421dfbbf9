"""Command-line tools for watching and querying racing speed telemetry.

The Typer application lives in :mod:`cli.app`; it is not re-exported here so
that ``cli.app`` keeps resolving to the module for patching.
"""

__all__: list[str] = []
