"""
=============================================================================
THREAD-PER-CONNECTION RESPONDER
=============================================================================

The baseline strategy the reactors are compared against: one blocking
thread per connection.

    main thread                          connection threads
    ───────────                          ──────────────────
    while running:
        slots.acquire()  ◄─── blocks when max_threads threads are
        │                     still waiting in accept()
        └──► start thread ─────────────► accept()          (blocking)
                                         slots.release()   ← one more may start
                                         while recv() > 0:
                                             sendall()
                                         close()

The semaphore bounds how many threads sit in accept() at once, not how many
connections are served: a thread that has accepted releases its slot and
keeps echoing for as long as its client stays connected.

Blocking I/O means no EAGAIN bookkeeping and no state machine, at the cost
of one stack per connection:

    10,000 connections = 10,000 threads × (stack size)

=============================================================================
"""

import logging
import socket
import threading
from typing import Optional

from ..errors import FatalError
from .responder import ResponderStats


logger = logging.getLogger(__name__)


# Errors that just mean the client went away
_PEER_GONE = (ConnectionResetError, BrokenPipeError, ConnectionAbortedError)


class ThreadedResponder:
    """
    Echo responder with one thread per accepted connection.

    Usage:
        listener = make_listening_socket(7000, non_blocking=False)
        ThreadedResponder(listener, max_threads=64).serve_forever()
    """

    def __init__(
        self,
        listener: socket.socket,
        buffer_size: int = 1024,
        max_threads: int = 64,
        accept_timeout: float = 1.0,
    ):
        """
        Args:
            listener: Listening socket, possibly shared with other processes.
            buffer_size: Bytes requested per recv() call.
            max_threads: Threads allowed to wait in accept() at once.
            accept_timeout: Seconds between checks of the running flag while
                            waiting for a connection or a free slot.
        """
        self.listener = listener
        self.buffer_size = buffer_size
        self.max_threads = max_threads
        self.accept_timeout = accept_timeout

        self.stats = ResponderStats()
        self._stats_lock = threading.Lock()
        self._slots = threading.Semaphore(max_threads)
        self._running = False
        self._failure: Optional[FatalError] = None
        self._next_thread_id = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def serve_forever(self) -> None:
        """
        Spawn accepting threads until shutdown() or a fatal accept error.

        Raises:
            FatalError: If a connection thread hit an unrecoverable accept()
                        failure. Threads cannot end the process themselves,
                        so the main thread re-raises it.
        """
        # A timeout lets accept() notice shutdown; the kernel still hands
        # each connection to exactly one waiting thread.
        self.listener.settimeout(self.accept_timeout)
        self._running = True
        logger.info(f"Threaded responder ready on port {self.listener.getsockname()[1]} "
                    f"({self.max_threads} accepting threads)")

        while self._running:
            if self._failure is not None:
                self._running = False
                raise self._failure

            if not self._slots.acquire(timeout=self.accept_timeout):
                continue

            thread = threading.Thread(
                target=self._serve_one,
                name=f"echo-{self._next_thread_id}",
                daemon=True,
            )
            self._next_thread_id += 1
            thread.start()

    def shutdown(self) -> None:
        self._running = False

    # =========================================================================
    # CONNECTION THREADS
    # =========================================================================

    def _serve_one(self) -> None:
        try:
            sock = self._accept()
        finally:
            self._slots.release()

        if sock is None:
            return

        with sock:
            self._echo(sock)

        with self._stats_lock:
            self.stats.closed += 1

    def _accept(self) -> Optional[socket.socket]:
        while self._running:
            try:
                sock, address = self.listener.accept()
            except (socket.timeout, BlockingIOError):
                continue
            except ConnectionAbortedError:
                continue
            except OSError as e:
                logger.error(f"accept failed: {e}")
                self._failure = FatalError("accept", e)
                return None

            sock.settimeout(None)
            with self._stats_lock:
                self.stats.accepted += 1
            logger.debug(f"[{threading.current_thread().name}] accepted {address[0]}:{address[1]}")
            return sock
        return None

    def _echo(self, sock: socket.socket) -> None:
        """Blocking echo loop; returns when the client disconnects."""
        while True:
            try:
                data = sock.recv(self.buffer_size)
                if not data:
                    return
                sock.sendall(data)
            except _PEER_GONE:
                return
            except OSError as e:
                logger.warning(f"[{threading.current_thread().name}] connection error: {e}")
                return

            with self._stats_lock:
                self.stats.bytes_echoed += len(data)
