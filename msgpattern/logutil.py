"""Console and log output for server events."""

from __future__ import annotations

import logging
from typing import Any

_logger = logging.getLogger("msgpattern")


def _format_args(args: tuple[Any, ...]) -> str:
    return "[" + " ".join(str(arg) for arg in args) + "]"


def log_and_print(data: Any, *args: Any) -> None:
    """Print ``data`` (and any extra ``args``) to stdout and log it at INFO level.

    The log record points at the caller of this function.
    """
    if not args:
        print(data)
        _logger.info("%s", data, stacklevel=2)
        return

    rendered = _format_args(args)
    print(data, rendered)
    _logger.info("data: %s\n args: %s", data, rendered, stacklevel=2)