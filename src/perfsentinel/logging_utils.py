from __future__ import annotations

import logging
import sys

_PLAIN_FORMAT = "perfsentinel: %(message)s"
_VERBOSE_FORMAT = "perfsentinel %(levelname)-7s %(name)s: %(message)s"


def log_level(*, verbose: bool, quiet: bool) -> int:
    if verbose:
        return logging.DEBUG
    if quiet:
        return logging.WARNING
    return logging.INFO


def configure_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """
    Route log records to stderr for CLI runs.

    stdout is reserved for reports, so `--format json` output stays parseable
    no matter how chatty the analysis is.
    """

    fmt = _VERBOSE_FORMAT if verbose else _PLAIN_FORMAT
    logging.basicConfig(level=log_level(verbose=verbose, quiet=quiet), format=fmt, stream=sys.stderr, force=True)
