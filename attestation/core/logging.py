"""Logging configuration for the attestation service.

Every log line goes to stdout, in one of two shapes:

  _ContainerFormatter: one human-readable line per record, for local
    development and for the CLI.  WARNING and above get the source
    location appended so a rejected transfer or a failed mint can be
    traced back to the guard clause that raised it.

  _JsonFormatter: one JSON object per line (JSON Lines), for production
    log pipelines.  Context fields attached to a record by the request
    middleware or by the attestation connectors (request_id,
    attestation_id, namespace, operation...) become top-level keys, so
    "every failed transfer for namespace=nft" is a filter, not a regex.

Set LOG_JSON=true to switch to JSON output.

Nothing secret is ever passed to a logger here: attestation ids, namespaces
and identities are public, while private keys, seeds and raw proofs are not
logged.
"""

from __future__ import annotations

import json
import logging
import sys


class _ContainerFormatter(logging.Formatter):
    """Single-line formatter tuned for container stdout.

    - Always: ISO-8601 timestamp, level, logger name, message
    - WARNING+: appends [filename:lineno]
    - ERROR/CRITICAL: stack trace included when exc_info is present
    """

    _BASE_FMT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"
    _LOC_SUFFIX = "  [%(filename)s:%(lineno)d]"

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        base = super().formatTime(record, datefmt)
        ms = int(record.msecs)
        # Insert .NNN before the timezone offset (last 5 chars: +0000)
        return f"{base[:-5]}.{ms:03d}{base[-5:]}"

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            self._style._fmt = self._BASE_FMT + self._LOC_SUFFIX
        else:
            self._style._fmt = self._BASE_FMT
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """JSON Lines formatter for machine-parseable log output."""

    # Request fields come from RequestContextMiddleware, attestation
    # fields from the connectors (passed as ``extra=``).
    _CONTEXT_FIELDS = (
        "request_id",
        "method",
        "path",
        "status_code",
        "duration_ms",
        "operation",
        "namespace",
        "attestation_id",
        "error_code",
    )

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in self._CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Configure the root logger.

    Args:
        level_name: Log level string (debug/info/warning/error); unknown
                    values fall back to info.
        json_format: Emit JSON lines instead of the single-line text format.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # Keep third-party loggers from flooding at DEBUG
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error", "httpcore", "httpx"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
