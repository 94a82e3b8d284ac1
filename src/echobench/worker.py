"""
=============================================================================
WORKER PROCESSES
=============================================================================

The code that runs INSIDE each forked process. One worker = one reactor
(or one thread-per-connection responder) over its share of the workload.

STOP SIGNALS
────────────

    SIGINT (2):   sent by the supervisor to the whole process group when the
                  run duration is over, or by Ctrl+C in the terminal
    SIGTERM (15): sent by kill, systemd, docker stop

On either one a worker:
    1. client role: prints its statistics block under the shared lock
       responder role: logs its connection counters
    2. exits immediately with status 0

There is no drain of in-flight connections. The process is a benchmark
participant; its open sockets die with it.

The handler runs at most once. Python runs signal handlers between
bytecodes of the main thread, so a second signal arriving while the first
handler holds the print lock would otherwise re-enter it and deadlock on a
non-reentrant lock.

=============================================================================
"""

import logging
import os
import signal
import socket
import sys
from typing import Callable

from .config import ClientConfig, ResponderConfig
from .core.loadgen import LoadGenerator
from .core.reactor import make_reactor
from .core.responder import EchoResponder
from .core.stats import StatsAggregator
from .core.threaded import ThreadedResponder
from .errors import FatalError


logger = logging.getLogger(__name__)


STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_stop_handler(on_stop: Callable[[str], None]) -> dict:
    """
    Route SIGINT and SIGTERM to on_stop(signal_name), once.

    Workers are forked with both signals blocked (see Supervisor.spawn).
    They are unblocked only here, after the handler is in place, so a stop
    sent during startup is delivered to on_stop instead of being lost.

    Returns:
        The previous handlers, keyed by signal.
    """
    fired = []

    def stop_handler(signum, frame):
        if fired:
            return
        fired.append(signum)
        on_stop(signal.Signals(signum).name)

    originals = {}
    for sig in STOP_SIGNALS:
        originals[sig] = signal.signal(sig, stop_handler)
    signal.pthread_sigmask(signal.SIG_UNBLOCK, STOP_SIGNALS)
    return originals


def responder_worker(listener: socket.socket, config: ResponderConfig, worker_id: int) -> None:
    """
    Entry point of one responder worker process.

    Args:
        listener: The listening socket inherited from the supervisor.
        config: Responder configuration.
        worker_id: Index of this worker, for logging.
    """
    server = None

    def on_stop(signal_name: str) -> None:
        summary = server.stats.summary() if server is not None else "not started"
        logger.info(f"Worker {worker_id} received {signal_name}: {summary}")
        sys.exit(0)

    install_stop_handler(on_stop)
    logger.debug(f"Worker {worker_id} started (pid {os.getpid()}, strategy {config.strategy})")

    try:
        if config.strategy == "thread":
            server = ThreadedResponder(
                listener,
                buffer_size=config.buffer_size,
                max_threads=config.max_threads,
            )
        else:
            server = EchoResponder(
                listener,
                make_reactor(config.strategy, config.poll_timeout),
                buffer_size=config.buffer_size,
            )
        server.serve_forever()
    except FatalError as e:
        logger.error(f"Worker {worker_id} failed: {e}")
        sys.exit(e.exit_code)


def client_worker(config: ClientConfig, clients: int, print_lock, worker_id: int) -> None:
    """
    Entry point of one load-generator worker process.

    Sockets are created HERE, after fork, so no connection descriptor is
    ever shared between processes.

    Args:
        config: Client configuration.
        clients: This worker's share of the connection slots.
        print_lock: Cross-process lock guarding the statistics print.
        worker_id: Index of this worker, for logging.
    """
    stats = StatsAggregator(target_sessions=clients)

    def on_stop(signal_name: str) -> None:
        logger.debug(f"Worker {worker_id} received {signal_name}")
        stats.print_report(print_lock)
        sys.exit(0)

    install_stop_handler(on_stop)
    logger.debug(f"Worker {worker_id} started (pid {os.getpid()}, {clients} clients)")

    try:
        generator = LoadGenerator(config, clients, make_reactor(config.strategy, config.poll_timeout), stats)
        generator.open_all()
        generator.run()
    except FatalError as e:
        logger.error(f"Worker {worker_id} failed: {e}")
        sys.exit(e.exit_code)
