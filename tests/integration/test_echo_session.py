"""
Integration tests: load generator against a live responder, in one process.
"""

import time

import pytest

from echobench.config import ClientConfig
from echobench.core.loadgen import LoadGenerator
from echobench.core.reactor import make_reactor
from echobench.core.stats import StatsAggregator


def run_generator(port, strategy, sessions, clients=1, retransmits=2, payload=b"PING", timeout=10.0):
    config = ClientConfig(
        host="127.0.0.1",
        port=port,
        clients=clients,
        payload=payload,
        retransmits=retransmits,
    )
    stats = StatsAggregator(target_sessions=clients)
    gen = LoadGenerator(config, clients, make_reactor(strategy, poll_timeout=0.05), stats)
    deadline = time.monotonic() + timeout

    gen.open_all()
    try:
        gen.run(until=lambda: stats.stats.total_sessions >= sessions or time.monotonic() > deadline)
    finally:
        gen.close()
    return stats


@pytest.mark.parametrize("client_strategy", ["epoll", "poll"])
class TestEchoSession:
    """Full echo sessions over loopback, every reactor combination."""

    def test_ping_three_times(self, background_responder, reactor_cls, client_strategy, wait_for):
        """PING with retransmits=2 is echoed three times: 12 bytes."""
        server = background_responder(reactor_cls)

        stats = run_generator(server.port, client_strategy, sessions=1)

        assert stats.stats.total_sessions == 1
        assert stats.stats.aborted_sessions == 0
        assert wait_for(lambda: server.stats.bytes_echoed == 12)

    def test_many_sessions(self, background_responder, reactor_cls, client_strategy):
        server = background_responder(reactor_cls)

        stats = run_generator(server.port, client_strategy, sessions=100, clients=10, retransmits=1)

        s = stats.stats
        assert s.total_sessions >= 100
        assert s.aborted_sessions == 0
        assert 1 <= s.peak_concurrent_sessions <= 10
        assert s.min_service_time <= s.avg_service_time <= s.max_service_time

    def test_payload_larger_than_buffer(self, background_responder, reactor_cls, client_strategy):
        server = background_responder(reactor_cls, buffer_size=16)

        stats = run_generator(server.port, client_strategy, sessions=5, payload=b"x" * 5000)

        assert stats.stats.total_sessions >= 5
        assert stats.stats.aborted_sessions == 0
