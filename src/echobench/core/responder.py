"""
=============================================================================
ECHO RESPONDER (SERVER ROLE)
=============================================================================

Purely reactive: whatever a client sends comes back, byte for byte, in
order, with no framing. No sessions, no retransmits.

    ┌────────────────────────────────────────────────────────────────────┐
    │                                                                     │
    │   LISTENER readable ──► accept() until EAGAIN                       │
    │                              │                                      │
    │                              ▼ (per accepted socket)                │
    │                         READ_WAIT                                   │
    │                          │     ▲                                    │
    │       readable: drain    │     │  everything written                │
    │       recv() into buffer │     │                                    │
    │                          ▼     │                                    │
    │                         WRITE_WAIT ── writable: send() buffer       │
    │                                                                     │
    │   recv() == b"" / reset / hangup in any state: close                │
    │                                                                     │
    │   A client that sends faster than it reads is not drained past      │
    │   max_pending: the rest waits in the kernel until the echo is out.  │
    │                                                                     │
    └────────────────────────────────────────────────────────────────────┘

SHARED LISTENER
───────────────
Every worker process registers the SAME inherited listening descriptor. When
a connection arrives, several workers may wake up, but only one accept()
wins. The others get EAGAIN ("no connection pending"), which just means
another worker got there first.

=============================================================================
"""

import errno
import logging
import socket
from dataclasses import dataclass

from ..errors import FatalError
from .connection import Connection, Role
from .reactor import FAILED, Interest, Reactor, Readiness, Registration


logger = logging.getLogger(__name__)


# accept() failures that concern one half-open connection, not the listener
_TRANSIENT_ACCEPT_ERRORS = (errno.ECONNABORTED, errno.EPROTO, errno.EINTR)

# Unsent echo data, in buffer_size units, before a connection stops reading
_PENDING_BUFFERS = 16


@dataclass
class ResponderStats:
    """Counters for one responder worker, logged when it stops."""
    accepted: int = 0
    closed: int = 0
    bytes_echoed: int = 0

    @property
    def open_connections(self) -> int:
        return self.accepted - self.closed

    def summary(self) -> str:
        return (f"accepted={self.accepted} closed={self.closed} "
                f"open={self.open_connections} bytes_echoed={self.bytes_echoed}")


class EchoResponder:
    """
    Server-role state machine over one reactor.

    Usage:
        listener = make_listening_socket(7000)
        responder = EchoResponder(listener, EpollReactor())
        responder.serve_forever()
    """

    def __init__(self, listener: socket.socket, reactor: Reactor, buffer_size: int = 1024):
        self.listener = listener
        self.reactor = reactor
        self.buffer_size = buffer_size
        self.max_pending = buffer_size * _PENDING_BUFFERS
        self.stats = ResponderStats()
        self.connections = {}

    def start(self) -> None:
        """Register the listener. Safe to call once per reactor."""
        # The listener is shared between processes; a blocking accept()
        # would hang whichever worker lost the race.
        self.listener.setblocking(False)
        self.reactor.register(self.listener, Interest.READ_WAIT)
        logger.info(f"Responder ready on port {self.listener.getsockname()[1]}")

    def serve_forever(self, until=None) -> None:
        if self.reactor.registration(self.listener) is None:
            self.start()
        self.reactor.run(self.handle_event, until)

    def shutdown(self) -> None:
        self.reactor.stop()

    def close(self) -> None:
        """Close every accepted connection and the reactor (not the listener)."""
        for conn in list(self.connections.values()):
            self._close(conn, "responder closing")
        self.reactor.deregister(self.listener)
        self.reactor.close()

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def handle_event(self, reg: Registration, readiness: Readiness) -> None:
        if reg.sock is self.listener:
            if readiness & FAILED:
                raise FatalError("listener reported an error")
            self._accept_all()
            return

        conn: Connection = reg.data

        if readiness & FAILED:
            self._close(conn, "hangup" if readiness & Readiness.HANGUP else "socket error")
            return

        if reg.interest is Interest.READ_WAIT:
            if readiness & Readiness.READABLE:
                self._on_readable(conn)
        elif readiness & Readiness.WRITABLE:
            self._on_writable(conn)

    def _accept_all(self) -> None:
        """Accept until the queue is empty (or another worker emptied it)."""
        while True:
            try:
                sock, address = self.listener.accept()
            except BlockingIOError:
                return
            except OSError as e:
                if e.errno in _TRANSIENT_ACCEPT_ERRORS:
                    continue
                raise FatalError("accept", e) from e

            sock.setblocking(False)
            conn = Connection(Role.SERVER, sock=sock, address=address)
            self.connections[conn.id] = conn
            self.reactor.register(sock, Interest.READ_WAIT, conn)
            self.stats.accepted += 1
            logger.debug(f"[{conn.id}] accepted {address[0]}:{address[1]}")

    def _on_readable(self, conn: Connection) -> None:
        try:
            _, peer_closed = conn.drain(self.buffer_size, keep=True, limit=self.max_pending)
        except OSError as e:
            self._close(conn, str(e))
            return

        if peer_closed:
            self._close(conn, "closed by peer")
        elif conn.has_pending_output:
            self.reactor.modify(conn.sock, Interest.WRITE_WAIT)

    def _on_writable(self, conn: Connection) -> None:
        pending = len(conn.outbound)
        try:
            sent_all = conn.flush()
        except OSError as e:
            self._close(conn, str(e))
            return
        finally:
            self.stats.bytes_echoed += pending - len(conn.outbound)

        if sent_all:
            self.reactor.modify(conn.sock, Interest.READ_WAIT)

    def _close(self, conn: Connection, reason: str) -> None:
        logger.debug(f"[{conn.id}] closing: {reason}")
        if conn.sock is not None:
            self.reactor.deregister(conn.sock)
        conn.close()
        self.connections.pop(conn.id, None)
        self.stats.closed += 1
