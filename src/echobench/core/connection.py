"""
=============================================================================
CONNECTION RECORDS
=============================================================================

One Connection per live socket, owned by the reactor it is registered with.

TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
─────────────────────────────────────────────

    Client sends:   send("PING")
    Client might receive the echo as:
        recv() → "PING"
        recv() → "PI", recv() → "NG"
        recv() → "P",  recv() → "ING"

So nobody here waits for "a message". Both roles count bytes:

    bytes_in_cycle     bytes received since the current round started
    outbound           bytes accepted for sending but not yet written

=============================================================================
ROLE-SPECIFIC FIELDS
=============================================================================

    ┌──────────────────────┬───────────────────────┬─────────────────────┐
    │ field                │ CLIENT (load gen)     │ SERVER (responder)  │
    ├──────────────────────┼───────────────────────┼─────────────────────┤
    │ slot                 │ fixed slot index      │ -1                  │
    │ transmit_count       │ payload sends so far  │ unused              │
    │ bytes_in_cycle       │ echo bytes this round │ bytes read total    │
    │ cycle_start          │ first transmit (ms)   │ unused              │
    │ outbound             │ payload being sent    │ bytes to echo back  │
    │ connect_failures     │ consecutive failures  │ unused              │
    └──────────────────────┴───────────────────────┴─────────────────────┘

A client slot's Connection is never thrown away: when its session ends the
socket is replaced and reset() clears the counters, so the slot array never
grows or shrinks.

=============================================================================
"""

import enum
import logging
import socket
import uuid
from dataclasses import dataclass, field
from typing import Optional, Tuple


logger = logging.getLogger(__name__)


class Role(enum.Enum):
    CLIENT = "client"
    SERVER = "server"


@dataclass(eq=False)
class Connection:
    """
    Per-socket state for one connection.

    Attributes:
        role: CLIENT or SERVER.
        sock: The non-blocking socket (None while a client slot is empty).
        address: Peer address, when known.
        slot: Client slot index.
        id: Short identifier for logging.
    """

    role: Role
    sock: Optional[socket.socket] = None
    address: Optional[Tuple[str, int]] = None
    slot: int = -1

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    transmit_count: int = 0
    bytes_in_cycle: int = 0
    cycle_start: float = 0.0
    connect_failures: int = 0

    outbound: bytearray = field(default_factory=bytearray, repr=False)

    @property
    def is_open(self) -> bool:
        return self.sock is not None

    @property
    def has_pending_output(self) -> bool:
        return len(self.outbound) > 0

    def reset(self, sock: Optional[socket.socket] = None) -> None:
        """
        Clear the per-session counters and attach a new socket.

        connect_failures survives, since it counts across replacements.
        """
        self.sock = sock
        self.address = None
        self.transmit_count = 0
        self.bytes_in_cycle = 0
        self.cycle_start = 0.0
        self.outbound.clear()

    # =========================================================================
    # READING
    # =========================================================================

    def drain(self, buffer_size: int, keep: bool = False, limit: Optional[int] = None) -> Tuple[int, bool]:
        """
        Read until the socket has nothing more to give.

        On an edge-triggered reactor this is mandatory: stopping early would
        strand bytes until the peer sends something new. The one exception is
        `limit`: the caller stops early on purpose and must re-arm the socket
        later (Reactor.modify() does) to be told about the rest.

        Args:
            buffer_size: Bytes requested per recv() call.
            keep: Append what was read to outbound (echo it later).
            limit: Stop once outbound holds at least this many bytes.

        Returns:
            (bytes read, peer closed). "Peer closed" means recv() returned
            b"", the orderly shutdown signal.

        Raises:
            OSError: On a connection-level failure (reset, etc.).
        """
        total = 0
        while limit is None or len(self.outbound) < limit:
            try:
                chunk = self.sock.recv(buffer_size)
            except BlockingIOError:
                return total, False

            if not chunk:
                return total, True

            total += len(chunk)
            self.bytes_in_cycle += len(chunk)
            if keep:
                self.outbound += chunk
        return total, False

    # =========================================================================
    # WRITING
    # =========================================================================

    def queue(self, data: bytes) -> None:
        self.outbound += data

    def flush(self) -> bool:
        """
        Write pending bytes until done or the socket buffer is full.

        send() may accept only part of what it is given. Whatever it does
        not take stays in outbound for the next writability event.

        Returns:
            True once outbound is empty.

        Raises:
            OSError: On a connection-level failure (EPIPE, ECONNRESET...).
        """
        while self.outbound:
            try:
                sent = self.sock.send(self.outbound)
            except BlockingIOError:
                return False
            del self.outbound[:sent]
        return True

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self) -> None:
        """Close the socket immediately, without a shutdown() handshake."""
        if self.sock is None:
            return
        try:
            self.sock.close()
        except OSError as e:
            logger.debug(f"[{self.id}] close failed: {e}")
        self.sock = None
