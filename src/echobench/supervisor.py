"""
=============================================================================
SUPERVISOR: WORKER FAN-OUT
=============================================================================

The supervisor forks N worker processes, hands each its share of the work,
and decides when the run is over.

=============================================================================
FAN-OUT ORDER MATTERS
=============================================================================

    RESPONDER: socket BEFORE fork
    ──────────────────────────────

        supervisor: listen(port) ──► fork ──► fork ──► fork
                          │            │        │        │
                          └── same descriptor in every worker

        All workers accept() on ONE listening socket; the kernel decides
        who gets each connection.

    CLIENT: sockets AFTER fork
    ──────────────────────────

        supervisor: Lock() ──► fork ──► fork ──► fork
                                 │        │        │
                              connect  connect  connect   (own sockets each)

        Connection descriptors are never shared between processes. Only the
        statistics print lock is, and it must exist before the first fork.

=============================================================================
TERMINATION
=============================================================================

    duration set:     sleep(duration)
                      ignore SIGINT in the supervisor itself
                      killpg(own group, SIGINT)   ← every worker prints + exits
                      join all workers

    no duration:      join all workers
                      Worker loops never end on their own, so this path runs
                      until something outside (Ctrl+C, kill) stops them.

Workers are forked with multiprocessing's "fork" start method explicitly:
the inherited listening socket and lock depend on fork semantics, whatever
the platform default start method is.

=============================================================================
"""

import logging
import multiprocessing
import os
import signal
import time
from typing import Callable, List, Optional

from .config import ClientConfig, ResponderConfig
from .core.sockets import make_listening_socket
from .core.stats import allocate
from .errors import EX_OK, EX_OSERR, FatalError
from .worker import STOP_SIGNALS, client_worker, responder_worker


logger = logging.getLogger(__name__)


# A worker ended by its own stop signal stopped cleanly
_CLEAN_EXITS = (EX_OK, -signal.SIGINT, -signal.SIGTERM)


class Supervisor:
    """
    Spawns and reaps worker processes.

    Usage:
        supervisor = Supervisor(workers=4)
        lock = supervisor.lock()                   # before spawning
        supervisor.spawn(target, lambda i: (arg, i))
        exit_code = supervisor.wait(duration=10.0)
    """

    def __init__(self, workers: int):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.workers = workers
        self._context = multiprocessing.get_context("fork")
        self._processes: List[multiprocessing.Process] = []

    @property
    def processes(self) -> List[multiprocessing.Process]:
        return list(self._processes)

    def lock(self):
        """
        Create a lock shared with every worker forked after this call.

        Raises:
            FatalError: If the shared semaphore cannot be created.
        """
        try:
            return self._context.Lock()
        except OSError as e:
            raise FatalError("shared lock", e) from e

    def spawn(self, target: Callable[..., None], args_for: Callable[[int], tuple]) -> None:
        """
        Fork one process per worker.

        Stop signals are blocked while forking, and children start with
        them blocked. A stop that arrives before a worker has installed its
        handler stays pending until install_stop_handler() unblocks it.

        Args:
            target: Worker entry point.
            args_for: Maps a worker index to that worker's arguments.
        """
        previous_mask = signal.pthread_sigmask(signal.SIG_BLOCK, STOP_SIGNALS)
        try:
            for worker_id in range(self.workers):
                process = self._context.Process(
                    target=target,
                    args=args_for(worker_id),
                    name=f"echobench-worker-{worker_id}",
                )
                try:
                    process.start()
                except OSError as e:
                    raise FatalError("fork", e) from e
                self._processes.append(process)
                logger.debug(f"Spawned worker {worker_id} (pid {process.pid})")
        finally:
            signal.pthread_sigmask(signal.SIG_SETMASK, previous_mask)

    def stop_workers(self) -> None:
        """Send SIGINT to the whole process group, sparing the supervisor."""
        signal.signal(signal.SIGINT, signal.SIG_IGN)
        logger.info("Run duration elapsed, stopping workers")
        os.killpg(os.getpgrp(), signal.SIGINT)

    def wait(self, duration: Optional[float] = None) -> int:
        """
        Block until the run is over.

        Args:
            duration: Seconds to let the workers run before stopping them.
                      None = wait for them to exit on their own.

        Returns:
            EX_OSERR if any worker failed fatally, else EX_OK.
        """
        try:
            if duration is not None:
                time.sleep(duration)
                self.stop_workers()
            self._join_all()
        except KeyboardInterrupt:
            # The terminal sent SIGINT to the workers as well
            logger.info("Interrupted, waiting for workers to exit")
            signal.signal(signal.SIGINT, signal.SIG_IGN)
            self._join_all()

        return self._exit_code()

    def _join_all(self) -> None:
        for process in self._processes:
            process.join()

    def _exit_code(self) -> int:
        """
        EX_OSERR unless every worker exited 0 or died of its own stop signal.
        An uncaught exception (exit code 1) or a foreign signal counts as fatal.
        """
        failed = [p for p in self._processes if p.exitcode not in _CLEAN_EXITS]
        for process in failed:
            logger.error(f"{process.name} (pid {process.pid}) failed with exit code {process.exitcode}")
        return EX_OSERR if failed else EX_OK


# =============================================================================
# RUNNERS
# =============================================================================


def run_responder(config: ResponderConfig) -> int:
    """
    Start the echo responder: listen, fork workers, wait.

    Returns:
        Process exit code.

    Raises:
        FatalError: If the listening socket cannot be created.
    """
    listener = make_listening_socket(
        config.port,
        non_blocking=config.strategy != "thread",
        host=config.host,
        backlog=config.backlog,
    )
    port = listener.getsockname()[1]
    logger.info(f"Echo responder listening on {config.host}:{port} "
                f"with {config.workers} workers ({config.strategy})")

    supervisor = Supervisor(config.workers)
    supervisor.spawn(responder_worker, lambda worker_id: (listener, config, worker_id))

    # Workers hold their own copies of the descriptor
    listener.close()

    return supervisor.wait()


def run_client(config: ClientConfig) -> int:
    """
    Start the load generator: create the print lock, fork workers, wait.

    Returns:
        Process exit code.
    """
    shares = allocate(config.clients, config.workers)
    supervisor = Supervisor(config.workers)
    print_lock = supervisor.lock()

    logger.info(f"Echo client: {config.clients} clients across {config.workers} workers "
                f"to {config.host}:{config.port}, {len(config.payload)} byte payload, "
                f"{config.retransmits} retransmits")

    supervisor.spawn(
        client_worker,
        lambda worker_id: (config, shares[worker_id], print_lock, worker_id),
    )
    return supervisor.wait(config.duration)
