from __future__ import annotations

import json
import logging
import sys

# Attributes every LogRecord carries; anything else arrived through `extra=`.
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class MetadataFormatter(logging.Formatter):
    """Console formatter: `timestamp [LEVEL] message {metadata}`."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        meta = {key: value for key, value in vars(record).items() if key not in _RESERVED}
        if meta:
            line = f"{line} {json.dumps(meta, default=str, ensure_ascii=False)}"
        return line


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(MetadataFormatter())

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))


__all__ = ["MetadataFormatter", "configure_logging"]
