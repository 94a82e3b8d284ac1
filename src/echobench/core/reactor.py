"""
=============================================================================
READINESS REACTOR
=============================================================================

The reactor is the single-threaded heart of every worker process. It owns
the multiplexing handle, tracks which sockets are interested in what, and
blocks until the kernel reports that some of them are ready.

=============================================================================
THE CONTRACT
=============================================================================

    register(sock, interest, data)   start watching a socket
    modify(sock, interest)           swap READ_WAIT <-> WRITE_WAIT
    deregister(sock)                 stop watching (call BEFORE close)
    wait(timeout)                    block until something is ready
    run(dispatch, until)             wait + dispatch, forever or until told

A socket is always registered with exactly ONE interest:

    READ_WAIT   wake me when bytes can be read
    WRITE_WAIT  wake me when bytes can be written

Errors and hangups are always reported, whatever the interest.

=============================================================================
EDGE-TRIGGERED VS LEVEL-TRIGGERED
=============================================================================

    LEVEL-TRIGGERED (PollingReactor):
    ─────────────────────────────────
        "Is this socket readable?"  asked on EVERY wait()

        wait() → fd 5 readable       recv() 100 of 300 bytes
        wait() → fd 5 readable       recv() 100 of 200 bytes
        wait() → fd 5 readable       recv() 100 of 100 bytes
        wait() → (blocks)

        Forgiving: leftover data is reported again.

    EDGE-TRIGGERED (EpollReactor, EPOLLET):
    ───────────────────────────────────────
        "Did this socket BECOME readable?"  reported once per transition

        wait() → fd 5 readable       recv() 100 of 300 bytes
        wait() → (blocks!)           200 bytes stranded until the
                                     peer sends something new

        The receiver MUST drain: recv() until EAGAIN, send() until EAGAIN
        or done. In exchange each ready socket costs one wakeup, not one
        per wait() call, which is what lets one process juggle thousands
        of connections.

Both reactors satisfy the same contract. The state machines always drain,
so they run correctly on either.

=============================================================================
TAGGED HANDLES
=============================================================================

Every registration is a Registration object stored in a dict keyed by file
descriptor. wait() translates kernel (fd, mask) pairs into
(Registration, Readiness) pairs, so callers never touch raw descriptors.

    ┌─────────────┐       ┌───────────────────────────────────────────┐
    │ epoll says  │       │ _registrations                             │
    │ fd 7: IN    │──────►│   7 → Registration(sock, READ_WAIT, conn)  │
    └─────────────┘       │   9 → Registration(sock, WRITE_WAIT, conn) │
                          └───────────────────────────────────────────┘

Descriptor numbers get reused the moment a socket is closed. If a handler
closes fd 7 and immediately opens a replacement (which will likely also be
fd 7), any event still queued in the current batch for the OLD fd 7 must not
be applied to the NEW socket. deregister() therefore marks the old
Registration inactive, and run() skips inactive registrations.

=============================================================================
"""

import enum
import logging
import select
import selectors
import socket
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import FatalError


logger = logging.getLogger(__name__)


class Interest(enum.Enum):
    """The readiness a registered socket is currently waiting for."""
    READ_WAIT = "read_wait"
    WRITE_WAIT = "write_wait"


class Readiness(enum.IntFlag):
    """What the kernel reported for a socket in one wait() call."""
    READABLE = 1
    WRITABLE = 2
    HANGUP = 4
    ERROR = 8


# Either of these means the connection is unusable
FAILED = Readiness.HANGUP | Readiness.ERROR


@dataclass(eq=False)
class Registration:
    """
    Tagged handle for one registered socket.

    Attributes:
        sock: The registered socket.
        fd: Its descriptor at registration time (the map key).
        interest: Current interest. Only the reactor changes this.
        data: Caller's per-socket record (a Connection, or None).
        active: False once deregistered.
    """
    sock: socket.socket
    fd: int
    interest: Interest
    data: Any = None
    active: bool = True


Event = Tuple[Registration, Readiness]
Dispatch = Callable[[Registration, Readiness], None]


class Reactor:
    """
    Base reactor: registration bookkeeping and the dispatch loop.

    Subclasses provide the multiplexing primitive through four hooks:
    _add, _change, _remove and _poll.

    Usage:
        with EpollReactor() as reactor:
            reactor.register(listener, Interest.READ_WAIT)
            reactor.run(handle_event)
    """

    def __init__(self, poll_timeout: Optional[float] = None):
        """
        Args:
            poll_timeout: Deadline in seconds for each wait() inside run().
                          None = block until something is ready.
        """
        self.poll_timeout = poll_timeout
        self._registrations: Dict[int, Registration] = {}
        self._running = False
        self._closed = False

    def __len__(self) -> int:
        return len(self._registrations)

    def __contains__(self, sock: socket.socket) -> bool:
        reg = self._registrations.get(sock.fileno())
        return reg is not None and reg.sock is sock

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def register(self, sock: socket.socket, interest: Interest, data: Any = None) -> Registration:
        """
        Start watching a socket.

        Raises:
            ValueError: If the descriptor is already registered.
            FatalError: If the kernel refuses the registration.
        """
        fd = sock.fileno()
        if fd in self._registrations:
            raise ValueError(f"fd {fd} is already registered")

        reg = Registration(sock=sock, fd=fd, interest=interest, data=data)
        try:
            self._add(reg)
        except OSError as e:
            raise FatalError("register", e) from e

        self._registrations[fd] = reg
        return reg

    def modify(self, sock: socket.socket, interest: Interest) -> Registration:
        """
        Replace a socket's interest.

        On an edge-triggered reactor this also re-arms the socket: if it is
        already ready for the new interest, the next wait() reports it.
        """
        reg = self._lookup(sock)
        reg.interest = interest
        try:
            self._change(reg)
        except OSError as e:
            raise FatalError("modify", e) from e
        return reg

    def deregister(self, sock: socket.socket) -> Optional[Registration]:
        """
        Stop watching a socket. Must be called before the socket is closed.

        Returns:
            The removed Registration, or None if it was not registered.
        """
        fd = sock.fileno()
        if fd == -1:
            # Closed before deregistering; find it by identity instead
            fd = next((r.fd for r in self._registrations.values() if r.sock is sock), -1)
        reg = self._registrations.get(fd)
        if reg is None or reg.sock is not sock:
            return None

        del self._registrations[fd]
        reg.active = False
        try:
            self._remove(reg)
        except (OSError, KeyError, ValueError) as e:
            # The kernel already dropped it (descriptor closed underneath us)
            logger.debug(f"deregister fd {fd}: {e}")
        return reg

    def registration(self, sock: socket.socket) -> Optional[Registration]:
        reg = self._registrations.get(sock.fileno())
        if reg is not None and reg.sock is sock:
            return reg
        return None

    def _lookup(self, sock: socket.socket) -> Registration:
        reg = self.registration(sock)
        if reg is None:
            raise KeyError(f"socket fd {sock.fileno()} is not registered")
        return reg

    # =========================================================================
    # WAITING AND DISPATCH
    # =========================================================================

    def wait(self, timeout: Optional[float] = None) -> List[Event]:
        """
        Block until at least one socket is ready, or timeout elapses.

        Args:
            timeout: Seconds to wait. None = wait indefinitely.

        Returns:
            (Registration, Readiness) pairs. Empty on timeout.

        Raises:
            FatalError: If the multiplexing call itself fails.
        """
        try:
            ready = self._poll(timeout)
        except OSError as e:
            raise FatalError("wait", e) from e

        events = []
        for fd, readiness in ready:
            reg = self._registrations.get(fd)
            if reg is None:
                continue
            events.append((reg, readiness))
        return events

    def run(self, dispatch: Dispatch, until: Optional[Callable[[], bool]] = None) -> None:
        """
        The event loop.

        ┌─────────────────────────────────────────────────────────────────┐
        │   while running:                                                 │
        │       events = wait(poll_timeout)        ← blocks here           │
        │       for reg, readiness in events:                              │
        │           if reg.active:                 ← skip stale fd events  │
        │               dispatch(reg, readiness)   ← state machine step    │
        │       if until(): break                                          │
        └─────────────────────────────────────────────────────────────────┘

        Args:
            dispatch: Called once per ready socket.
            until: Optional predicate checked after each batch.
        """
        self._running = True
        try:
            while self._running:
                for reg, readiness in self.wait(self.poll_timeout):
                    if reg.active:
                        dispatch(reg, readiness)
                if until is not None and until():
                    break
        finally:
            self._running = False

    def stop(self) -> None:
        """Make run() return after the current batch."""
        self._running = False

    def close(self) -> None:
        """Release the multiplexing handle. Registered sockets stay open."""
        if self._closed:
            return
        for reg in self._registrations.values():
            reg.active = False
        self._registrations.clear()
        self._close()
        self._closed = True

    # =========================================================================
    # BACKEND HOOKS
    # =========================================================================

    def _add(self, reg: Registration) -> None:
        raise NotImplementedError

    def _change(self, reg: Registration) -> None:
        raise NotImplementedError

    def _remove(self, reg: Registration) -> None:
        raise NotImplementedError

    def _poll(self, timeout: Optional[float]) -> List[Tuple[int, Readiness]]:
        raise NotImplementedError

    def _close(self) -> None:
        pass


class EpollReactor(Reactor):
    """
    Edge-triggered reactor on Linux epoll.

    Every registration carries EPOLLET. Handlers must drain the socket on
    each notification (see module docstring).
    """

    _INTEREST_BITS = {
        Interest.READ_WAIT: select.EPOLLIN,
        Interest.WRITE_WAIT: select.EPOLLOUT,
    }

    def __init__(self, poll_timeout: Optional[float] = None, max_events: int = 2048):
        super().__init__(poll_timeout)
        self.max_events = max_events
        try:
            self._epoll = select.epoll()
        except OSError as e:
            raise FatalError("epoll_create", e) from e

    def _mask(self, interest: Interest) -> int:
        return self._INTEREST_BITS[interest] | select.EPOLLERR | select.EPOLLHUP | select.EPOLLET

    def _add(self, reg: Registration) -> None:
        self._epoll.register(reg.fd, self._mask(reg.interest))

    def _change(self, reg: Registration) -> None:
        self._epoll.modify(reg.fd, self._mask(reg.interest))

    def _remove(self, reg: Registration) -> None:
        self._epoll.unregister(reg.fd)

    def _poll(self, timeout: Optional[float]) -> List[Tuple[int, Readiness]]:
        raw = self._epoll.poll(-1 if timeout is None else timeout, self.max_events)
        return [(fd, _from_epoll(mask)) for fd, mask in raw]

    def _close(self) -> None:
        self._epoll.close()


class PollingReactor(Reactor):
    """
    Level-triggered reactor on the stdlib selectors module.

    The simpler alternative strategy: sockets are reported for as long as
    they stay ready. Errors surface as readable/writable, and the failing
    recv()/send() then tells the state machine what happened.
    """

    _INTEREST_EVENTS = {
        Interest.READ_WAIT: selectors.EVENT_READ,
        Interest.WRITE_WAIT: selectors.EVENT_WRITE,
    }

    def __init__(self, poll_timeout: Optional[float] = None):
        super().__init__(poll_timeout)
        try:
            self._selector = selectors.DefaultSelector()
        except OSError as e:
            raise FatalError("selector", e) from e

    def _add(self, reg: Registration) -> None:
        self._selector.register(reg.fd, self._INTEREST_EVENTS[reg.interest])

    def _change(self, reg: Registration) -> None:
        self._selector.modify(reg.fd, self._INTEREST_EVENTS[reg.interest])

    def _remove(self, reg: Registration) -> None:
        self._selector.unregister(reg.fd)

    def _poll(self, timeout: Optional[float]) -> List[Tuple[int, Readiness]]:
        ready = []
        for key, events in self._selector.select(timeout):
            readiness = Readiness(0)
            if events & selectors.EVENT_READ:
                readiness |= Readiness.READABLE
            if events & selectors.EVENT_WRITE:
                readiness |= Readiness.WRITABLE
            ready.append((key.fd, readiness))
        return ready

    def _close(self) -> None:
        self._selector.close()


def _from_epoll(mask: int) -> Readiness:
    readiness = Readiness(0)
    if mask & select.EPOLLIN:
        readiness |= Readiness.READABLE
    if mask & select.EPOLLOUT:
        readiness |= Readiness.WRITABLE
    if mask & select.EPOLLHUP:
        readiness |= Readiness.HANGUP
    if mask & select.EPOLLERR:
        readiness |= Readiness.ERROR
    return readiness


REACTORS = {
    "epoll": EpollReactor,
    "poll": PollingReactor,
}


def make_reactor(strategy: str = "epoll", poll_timeout: Optional[float] = None) -> Reactor:
    """
    Build the reactor for a strategy name ("epoll" or "poll").

    Raises:
        ValueError: For an unknown strategy.
    """
    try:
        cls = REACTORS[strategy]
    except KeyError:
        raise ValueError(f"No reactor for strategy {strategy!r}")
    return cls(poll_timeout=poll_timeout)
