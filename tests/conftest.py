"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Callable, Generator, List, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from echobench.config import ClientConfig
from echobench.core.reactor import EpollReactor, PollingReactor, Reactor, Registration
from echobench.core.responder import EchoResponder
from echobench.core.sockets import make_listening_socket


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def sock_pair() -> Generator[Tuple[socket.socket, socket.socket], None, None]:
    """Connected socket pair: (non-blocking local end, blocking peer end)."""
    local, peer = socket.socketpair()
    local.setblocking(False)
    peer.settimeout(5.0)
    yield local, peer
    local.close()
    peer.close()


@pytest.fixture(params=[EpollReactor, PollingReactor], ids=["epoll", "poll"])
def reactor_cls(request):
    """Both reactor implementations; they share one contract."""
    return request.param


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll until predicate() is true or timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RecordingReactor(Reactor):
    """
    Reactor whose backend only records calls.

    Tests drive the state machines by calling handle_event() themselves.
    """

    def __init__(self):
        super().__init__()
        self.calls: List[Tuple[str, int, Optional[object]]] = []

    def _add(self, reg: Registration) -> None:
        self.calls.append(("add", reg.fd, reg.interest))

    def _change(self, reg: Registration) -> None:
        self.calls.append(("modify", reg.fd, reg.interest))

    def _remove(self, reg: Registration) -> None:
        self.calls.append(("remove", reg.fd, None))

    def _poll(self, timeout):
        return []

    def interests(self) -> list:
        """The interest sequence, with a plain "closed" for removals."""
        return [interest if op != "remove" else "closed" for op, _, interest in self.calls]


class FakeServer:
    """
    Socket factory for LoadGenerator tests.

    Every connect() returns the local end of a fresh socketpair; the test
    plays the server on the other end.
    """

    def __init__(self, fail_times: int = 0):
        self.peers: List[socket.socket] = []
        self.locals: List[socket.socket] = []
        self.fail_times = fail_times
        self.attempts = 0

    def __call__(self, host, port, non_blocking=True) -> socket.socket:
        from echobench.errors import FatalError

        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise FatalError("connect", OSError(99, "Cannot assign requested address"))

        local, peer = socket.socketpair()
        local.setblocking(False)
        peer.settimeout(5.0)
        self.locals.append(local)
        self.peers.append(peer)
        return local

    @property
    def peer(self) -> socket.socket:
        """Server side of the most recent connection."""
        return self.peers[-1]

    def close(self):
        for s in self.peers + self.locals:
            s.close()


@pytest.fixture
def fake_server() -> Generator[FakeServer, None, None]:
    server = FakeServer()
    yield server
    server.close()


@pytest.fixture
def client_config() -> ClientConfig:
    """Default load generator configuration for tests."""
    return ClientConfig(
        host="127.0.0.1",
        port=7000,
        clients=1,
        payload=b"PING",
        retransmits=2,
        connect_attempts=3,
    )


class BackgroundResponder:
    """Echo responder running its reactor loop in a background thread."""

    def __init__(self, reactor_cls=EpollReactor, buffer_size: int = 1024):
        self.listener = make_listening_socket(0, host="127.0.0.1", backlog=128)
        self.port = self.listener.getsockname()[1]
        self.responder = EchoResponder(self.listener, reactor_cls(poll_timeout=0.05), buffer_size)
        self._thread: threading.Thread = None

    @property
    def stats(self):
        return self.responder.stats

    def start(self):
        """Start the reactor loop in a background thread."""
        self.responder.start()
        self._thread = threading.Thread(target=self.responder.serve_forever, daemon=True)
        self._thread.start()
        wait_for(lambda: self.responder.reactor.is_running)

    def stop(self):
        """Stop the loop and release every socket."""
        self.responder.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        self.responder.close()
        self.listener.close()

    def connect(self) -> socket.socket:
        sock = socket.create_connection(("127.0.0.1", self.port), timeout=5.0)
        return sock


@pytest.fixture
def echo_responder(reactor_cls) -> Generator[BackgroundResponder, None, None]:
    """A running responder on each reactor implementation."""
    server = BackgroundResponder(reactor_cls)
    server.start()
    yield server
    server.stop()


def recv_exactly(sock: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


@pytest.fixture
def recording_reactor() -> RecordingReactor:
    return RecordingReactor()


@pytest.fixture(name="wait_for")
def wait_for_fixture():
    """The wait_for() polling helper."""
    return wait_for


@pytest.fixture(name="recv_exactly")
def recv_exactly_fixture():
    return recv_exactly


@pytest.fixture
def background_responder():
    """Factory for background responders; every one is stopped at teardown."""
    servers = []

    def make(reactor_cls=EpollReactor, buffer_size: int = 1024) -> BackgroundResponder:
        server = BackgroundResponder(reactor_cls, buffer_size)
        server.start()
        servers.append(server)
        return server

    yield make
    for server in servers:
        server.stop()


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging() so caplog sees records in every test."""
    import logging

    yield
    package_logger = logging.getLogger("echobench")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True
