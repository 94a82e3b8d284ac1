"""
=============================================================================
SOCKET FACTORY
=============================================================================

Creates the two kinds of TCP sockets the tools need.

SOCKET LIFECYCLE (Responder):
─────────────────────────────

    1. socket()    Create a socket file descriptor
    2. setsockopt  SO_REUSEADDR, TCP_NODELAY
    3. bind()      Associate the socket with IP:PORT
    4. listen()    Start queueing incoming connections
    5. O_NONBLOCK  accept() returns EAGAIN instead of blocking

    The listening socket is created ONCE in the supervisor, before fork.
    Every worker inherits the same descriptor and races on accept():

                    ┌───────────────────────┐
                    │   Listening Socket    │  ◄── created before fork
                    └───────────┬───────────┘
                                │ (shared descriptor)
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    ┌───────────┐         ┌───────────┐         ┌───────────┐
    │ worker 0  │         │ worker 1  │         │ worker 2  │
    │ accept()  │         │ accept()  │         │ accept()  │
    └───────────┘         └───────────┘         └───────────┘
       wins                 EAGAIN                EAGAIN

    The kernel hands each pending connection to exactly one accept().
    The losers see "no connection pending", which is not an error.

SOCKET LIFECYCLE (Load generator):
──────────────────────────────────

    1. socket()    Create a socket
    2. setsockopt  TCP_NODELAY
    3. O_NONBLOCK  Before connect, so connect() does not wait for the SYN-ACK
    4. connect()   Returns EINPROGRESS; the socket becomes WRITABLE once the
                   handshake completes (or reports an error if it fails)

TCP_NODELAY:
────────────
Disables Nagle's algorithm. Echo payloads are small and latency is the thing
being measured, so every send() must hit the wire immediately.

=============================================================================
"""

import errno
import logging
import socket

from ..errors import FatalError


logger = logging.getLogger(__name__)


# connect() on a non-blocking socket reports the handshake as pending
_CONNECT_PENDING = (0, errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EAGAIN)


def make_listening_socket(
    port: int,
    non_blocking: bool = True,
    host: str = "0.0.0.0",
    backlog: int = 1024,
) -> socket.socket:
    """
    Create, bind and listen on a TCP socket.

    Args:
        port: Port to bind. 0 lets the OS pick a free port.
        non_blocking: Put the socket in non-blocking mode.
        host: Interface to bind.
        backlog: Accept queue length.

    Returns:
        A listening socket.

    Raises:
        FatalError: If any step fails. The caller cannot do useful work
                    without the socket.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    except OSError as e:
        raise FatalError("socket", e) from e

    try:
        # Restarting a benchmark right away must not hit "Address already
        # in use" from sockets still in TIME_WAIT.
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        sock.bind((host, port))
        sock.listen(backlog)
        sock.setblocking(not non_blocking)
    except OSError as e:
        sock.close()
        logger.error(f"Failed to listen on {host}:{port}: {e}")
        raise FatalError("listen", e) from e

    logger.debug(f"Listening on {host}:{sock.getsockname()[1]} (non_blocking={non_blocking})")
    return sock


def make_connecting_socket(host: str, port: int, non_blocking: bool = True) -> socket.socket:
    """
    Create a TCP socket and start connecting it to host:port.

    With non_blocking=True the connection is still in progress when this
    returns; the socket turns writable once it is established.

    Raises:
        FatalError: If the socket cannot be created or connect() fails
                    synchronously (e.g. no ephemeral ports left).
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    except OSError as e:
        raise FatalError("socket", e) from e

    try:
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        if non_blocking:
            sock.setblocking(False)
            result = sock.connect_ex((host, port))
            if result not in _CONNECT_PENDING:
                raise OSError(result, f"connect to {host}:{port} failed: {errno.errorcode.get(result, result)}")
        else:
            sock.connect((host, port))
    except OSError as e:
        sock.close()
        raise FatalError("connect", e) from e

    return sock
