"""
=============================================================================
LOGGING SETUP
=============================================================================

Every module logs through `logging.getLogger(__name__)`, so everything
lives under the "echobench" namespace and can be tuned in one place:

    logging.getLogger("echobench.core.reactor").setLevel(logging.DEBUG)

Two output formats:

    text:  2016-02-14 10:00:00 [4242] INFO echobench.worker: worker 0 started
    json:  {"time": "...", "pid": 4242, "level": "INFO", "logger": "...", ...}

The process id is part of both formats because N forked workers write to
the same stderr and would otherwise be indistinguishable.

Logs go to stderr. Statistics are printed to stdout, so

    echo-client ... 2>/dev/null

leaves only the per-worker statistics blocks.

=============================================================================
"""

import json
import logging
import sys
from datetime import datetime, timezone


TEXT_FORMAT = "%(asctime)s [%(process)d] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line, for log aggregators.

    Extra fields passed with `logger.info(..., extra={...})` are kept when
    they are JSON-serializable plain values.
    """

    _RESERVED = set(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "pid": record.process,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in self._RESERVED and isinstance(value, (str, int, float, bool)):
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry)


def setup_logging(level: str = "INFO", fmt: str = "text", stream=None) -> logging.Logger:
    """
    Configure the "echobench" logger.

    Safe to call more than once: existing handlers on the package logger are
    replaced, not stacked.

    Args:
        level: DEBUG, INFO, WARNING or ERROR.
        fmt: "text" or "json".
        stream: Where to write (default: stderr).

    Returns:
        The configured package logger.
    """
    root = logging.getLogger("echobench")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(stream or sys.stderr)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))

    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.propagate = False

    return root
