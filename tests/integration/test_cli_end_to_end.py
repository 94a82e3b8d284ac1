"""
End-to-end tests: both tools as real processes, via `python -m echobench`.
"""

import os
import re
import signal
import socket
import subprocess
import sys
import time
from pathlib import Path

import pytest


SRC = str(Path(__file__).parent.parent.parent / "src")


def tool_env():
    env = os.environ.copy()
    env["PYTHONPATH"] = SRC + os.pathsep + env.get("PYTHONPATH", "")
    env["ECHOBENCH_LOG_LEVEL"] = "WARNING"
    return env


def wait_for_port(port, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            with socket.create_connection(("127.0.0.1", port), timeout=0.5):
                return True
        except OSError:
            time.sleep(0.05)
    return False


def parse_blocks(output):
    """Statistics blocks keyed by worker pid."""
    blocks = {}
    for match in re.finditer(r"^\[(\d+)\]\n((?:\s*\w+: .*\n)+)", output, re.MULTILINE):
        fields = dict(re.findall(r"^\s*(\w+): (\S+)", match.group(2), re.MULTILINE))
        blocks[int(match.group(1))] = fields
    return blocks


@pytest.fixture(params=["epoll", "poll", "thread"])
def server(request, free_port):
    """echo-server with two workers, in its own process group."""
    process = subprocess.Popen(
        [sys.executable, "-m", "echobench", "server",
         "-p", str(free_port), "-n", "2", "--host", "127.0.0.1",
         "--strategy", request.param],
        env=tool_env(),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=True,
    )
    if not wait_for_port(free_port):
        os.killpg(process.pid, signal.SIGKILL)
        pytest.fail(f"server did not start: {process.communicate()[1].decode()}")

    yield free_port, process

    if process.poll() is None:
        os.killpg(process.pid, signal.SIGINT)
        try:
            process.wait(timeout=10)
        except subprocess.TimeoutExpired:
            os.killpg(process.pid, signal.SIGKILL)
            process.wait()


def run_client(port, *extra, timeout=30):
    return subprocess.run(
        [sys.executable, "-m", "echobench", "client",
         "-h", "127.0.0.1", "-p", str(port), *extra],
        env=tool_env(),
        capture_output=True,
        text=True,
        timeout=timeout,
        start_new_session=True,
    )


class TestEndToEnd:
    """Tests for the two tools running together."""

    def test_timed_run_prints_one_block_per_worker(self, server):
        port, _ = server

        result = run_client(port, "-n", "2", "-c", "5", "-d", "PING", "-r", "2", "-t", "1000")

        assert result.returncode == 0, result.stderr
        blocks = parse_blocks(result.stdout)
        assert len(blocks) == 2

        targets = sorted(int(b["targetSessionCount"]) for b in blocks.values())
        assert targets == [2, 3]
        for fields in blocks.values():
            assert int(fields["totalSessionCount"]) > 0
            assert float(fields["minServiceTime"]) <= float(fields["maxServiceTime"])
            assert int(fields["totalRuntime"]) >= 900

    def test_server_stops_cleanly_on_sigint(self, server):
        port, process = server

        os.killpg(process.pid, signal.SIGINT)

        assert process.wait(timeout=10) == 0


class TestExitCodes:
    """Tests for failures reported through the exit status."""

    def test_client_usage_error(self):
        result = run_client(7000, "-n", "1")
        assert result.returncode == 64
        assert "required" in result.stderr

    def test_client_without_server(self, free_port):
        result = run_client(free_port, "-n", "1", "-c", "1", "-d", "PING", "-r", "0",
                            "--connect-attempts", "2", "-t", "3000")
        assert result.returncode == 71

    def test_server_port_in_use(self, free_port):
        with socket.socket() as blocker:
            blocker.bind(("127.0.0.1", free_port))
            blocker.listen(1)

            result = subprocess.run(
                [sys.executable, "-m", "echobench", "server",
                 "-p", str(free_port), "-n", "1", "--host", "127.0.0.1"],
                env=tool_env(),
                capture_output=True,
                text=True,
                timeout=30,
            )

        assert result.returncode == 71
