from __future__ import annotations

import sys

# Verbose tracing switches
DEBUG_CLOSE: bool = False
DEBUG_ASYNC_WRITES: bool = False


def _log(msg: str) -> None:
    """Write a diagnostic line to stderr."""
    print(f"[greensockets] {msg}", file=sys.stderr, flush=True)
