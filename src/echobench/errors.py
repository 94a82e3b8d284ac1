"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every failure in echobench falls into one of four buckets:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  KIND                 EXAMPLE                    HANDLING            │
    ├─────────────────────────────────────────────────────────────────────┤
    │  expected-transient   EAGAIN on recv/accept      not an error,       │
    │                                                  re-enter the loop   │
    │  peer close           ECONNRESET, recv() == b""  tear down that one  │
    │                                                  connection          │
    │  resource / OS fatal  socket(), epoll_create()   FatalError, process │
    │                       failed                     exits EX_OSERR      │
    │  configuration        missing -p option          UsageError, exits   │
    │                                                  EX_USAGE            │
    └─────────────────────────────────────────────────────────────────────┘

Only the last two are exceptions. The first two are ordinary control flow
inside the state machines.

=============================================================================
"""

import os


EX_OK = os.EX_OK
EX_USAGE = os.EX_USAGE
EX_OSERR = os.EX_OSERR


class FatalError(Exception):
    """
    Raised when an OS-level resource cannot be created or used.

    Carries the name of the failing operation and the exit code the process
    should terminate with, the same way a parse error would carry the status
    code to send back.

        try:
            sock.bind(address)
        except OSError as e:
            raise FatalError("bind", e) from e
    """

    exit_code = EX_OSERR

    def __init__(self, context: str, cause: BaseException = None):
        self.context = context
        self.cause = cause
        if cause is None:
            super().__init__(context)
        else:
            super().__init__(f"{context}: {cause}")


class UsageError(Exception):
    """Raised for bad or missing command-line input, before any work starts."""

    exit_code = EX_USAGE
