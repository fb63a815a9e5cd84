"""
Logging setup for basecore services.

Every module logs through ``logging.getLogger(__name__)`` and passes
structured context with ``extra={...}``. The formatter appends those extra
fields to the line so they survive plain-text log collectors.
"""

import logging
import sys

from basecore.settings import get_settings

# Attributes present on every LogRecord; anything else came from ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}


class ExtraFieldsFormatter(logging.Formatter):
    """Formatter that renders ``extra`` fields as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if extras:
            rendered = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
            line = f"{line} | {rendered}"
        return line


def setup_logging(level: str | None = None) -> None:
    """
    Configure the root logger once per process.

    Args:
        level: Log level name; defaults to LOG_LEVEL from settings
    """
    level_name = (level or get_settings().LOG_LEVEL).upper()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ExtraFieldsFormatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level_name)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
