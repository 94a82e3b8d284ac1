"""
Unit tests for logging setup.
"""

import io
import json
import logging
import os

from echobench.log import setup_logging


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_text_format_includes_pid(self):
        stream = io.StringIO()
        setup_logging("INFO", "text", stream=stream)

        logging.getLogger("echobench.worker").info("worker 0 started")

        line = stream.getvalue()
        assert f"[{os.getpid()}]" in line
        assert "INFO echobench.worker: worker 0 started" in line

    def test_json_format(self):
        stream = io.StringIO()
        setup_logging("DEBUG", "json", stream=stream)

        logging.getLogger("echobench.core.reactor").debug("ready", extra={"fd": 7})

        entry = json.loads(stream.getvalue())
        assert entry["level"] == "DEBUG"
        assert entry["logger"] == "echobench.core.reactor"
        assert entry["message"] == "ready"
        assert entry["pid"] == os.getpid()
        assert entry["fd"] == 7

    def test_json_exception(self):
        stream = io.StringIO()
        setup_logging("INFO", "json", stream=stream)
        log = logging.getLogger("echobench")

        try:
            raise OSError("boom")
        except OSError:
            log.exception("failed")

        entry = json.loads(stream.getvalue())
        assert "OSError: boom" in entry["exception"]

    def test_level_filters(self):
        stream = io.StringIO()
        setup_logging("WARNING", "text", stream=stream)

        logging.getLogger("echobench.supervisor").info("hidden")
        logging.getLogger("echobench.supervisor").warning("shown")

        assert "hidden" not in stream.getvalue()
        assert "shown" in stream.getvalue()

    def test_repeated_setup_does_not_duplicate(self):
        stream = io.StringIO()
        setup_logging("INFO", "text", stream=stream)
        logger = setup_logging("INFO", "text", stream=stream)

        logger.info("once")

        assert len(logger.handlers) == 1
        assert stream.getvalue().count("once") == 1
