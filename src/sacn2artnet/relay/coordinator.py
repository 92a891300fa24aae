"""
Relay Coordinator: builds the relay loops and runs them.

Two architectures are supported:

- per-binding (default): one worker thread per `[[mapping]]` record, each
  with its own sACN receiver, Art-Net socket and private mapping table. A
  blocked or failed worker cannot stall the others.
- shared: one receiver subscribed to every input universe and one loop on
  the calling thread, consulting a single table built from all bindings.

Every mapping table is built before any socket is opened, so configuration
errors never leave a half-started relay behind.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from sacn2artnet.core.config import RelayMode, Settings
from sacn2artnet.core.exceptions import ConfigError, RelayError, SubscriptionError
from sacn2artnet.dmx.artnet import ArtNetEgress
from sacn2artnet.dmx.e131 import SacnIngress
from sacn2artnet.relay.loop import FrameEgress, FrameIngress, RelayLoop, RelayState
from sacn2artnet.relay.mapping import MappingTable

logger = structlog.get_logger()

IngressFactory = Callable[[str], FrameIngress]
EgressFactory = Callable[[str], FrameEgress]

JOIN_POLL_S = 0.5


@dataclass(frozen=True)
class WorkerStatus:
    """Startup outcome reported by a worker to the coordinator."""

    name: str
    started: bool
    error: Optional[Exception] = None


class RelayWorker:
    """Runs one RelayLoop on its own thread."""

    def __init__(
        self,
        loop: RelayLoop,
        results: queue.Queue[WorkerStatus],
        stop_event: threading.Event,
    ):
        self.loop = loop
        self.name = loop.name
        self._results = results
        self._stop_event = stop_event
        self._abandoned = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run,
            name=f"Relay-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def abandon(self) -> None:
        """Give up on a worker that never reported; it closes if it subscribes late."""
        self._abandoned.set()

    def _run(self) -> None:
        status = WorkerStatus(
            self.name,
            started=False,
            error=RuntimeError(f"relay worker {self.name} exited during startup"),
        )
        try:
            self.loop.subscribe()
            status = WorkerStatus(self.name, started=True)
        except Exception as e:
            status = WorkerStatus(self.name, started=False, error=e)
            self.loop.close()
        finally:
            # Exactly one report per worker, even if close() itself fails.
            self._results.put(status)

        if not status.started:
            return
        if self._abandoned.is_set():
            self.loop.close()
            return
        self.loop.run(self._stop_event)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


class RelayCoordinator:
    """
    Starts, supervises and stops the relay.

    In per-binding mode a worker that fails to subscribe is fatal to the
    whole relay when `abort_on_worker_failure` is set; otherwise it is
    logged and the remaining workers keep relaying.
    """

    def __init__(
        self,
        settings: Settings,
        ingress_factory: Optional[IngressFactory] = None,
        egress_factory: Optional[EgressFactory] = None,
    ):
        self.settings = settings
        self.mode = RelayMode(settings.mode)
        self._ingress_factory = ingress_factory or self._default_ingress
        self._egress_factory = egress_factory or self._default_egress

        self._stop_event = threading.Event()
        self._results: queue.Queue[WorkerStatus] = queue.Queue()
        self._loops: list[RelayLoop] = []
        self._workers: list[RelayWorker] = []
        self._failures: list[WorkerStatus] = []

    def _default_ingress(self, name: str) -> FrameIngress:
        config = self.settings.sacn
        return SacnIngress(
            bind_address=config.bind_address,
            bind_port=config.bind_port,
            multicast=config.multicast,
            name=name,
        )

    def _default_egress(self, name: str) -> FrameEgress:
        config = self.settings.artnet
        return ArtNetEgress(bind_address=config.bind_address, sequence=config.sequence)

    @property
    def failures(self) -> list[WorkerStatus]:
        return list(self._failures)

    @property
    def loops(self) -> list[RelayLoop]:
        return list(self._loops)

    def build_tables(self) -> dict[str, MappingTable]:
        """
        Build the mapping table(s) for the configured mode, keyed by loop name.

        Raises ConfigError; touches no sockets.
        """
        bindings = self.settings.mappings
        if not bindings:
            raise ConfigError("no mappings configured")

        if self.mode is RelayMode.SHARED:
            return {"shared": MappingTable.build(bindings)}

        return {
            f"mapping{index}@{binding.address}": MappingTable.build([binding])
            for index, binding in enumerate(bindings)
        }

    def start(self) -> None:
        """
        Build every loop and subscribe them.

        Raises ConfigError or SubscriptionError. In shared mode the loop is
        subscribed but not yet running; call wait() to run it.
        """
        tables = self.build_tables()
        for name, table in tables.items():
            logger.info("Translating universes", relay=name, mappings=table.describe())

        self._loops = [
            RelayLoop(
                table,
                self._ingress_factory(name),
                self._egress_factory(name),
                name=name,
                receive_timeout=self.settings.sacn.receive_timeout_s,
            )
            for name, table in tables.items()
        ]

        if self.mode is RelayMode.SHARED:
            loop = self._loops[0]
            try:
                loop.subscribe()
            except Exception:
                loop.close()
                raise
            return

        self._start_workers()

    def _start_workers(self) -> None:
        self._workers = [
            RelayWorker(loop, self._results, self._stop_event) for loop in self._loops
        ]
        for worker in self._workers:
            worker.start()

        statuses = self._collect_statuses(self.settings.worker_startup_timeout_s)
        self._failures = [status for status in statuses if not status.started]

        for status in self._failures:
            logger.error("Relay worker failed to start", worker=status.name, error=str(status.error))

        if not self._failures:
            logger.info("All relay workers started", workers=len(self._workers))
            return

        if self.settings.abort_on_worker_failure or len(self._failures) == len(self._workers):
            self.stop()
            failure = self._failures[0]
            if failure.error is not None:
                raise failure.error
            raise RelayError(f"relay worker {failure.name} failed to start", recoverable=False)

        logger.warning(
            "Continuing with remaining relay workers",
            running=len(self._workers) - len(self._failures),
            failed=[status.name for status in self._failures],
        )

    def _collect_statuses(self, timeout: float) -> list[WorkerStatus]:
        """
        Wait up to `timeout` seconds for every worker's startup report.

        A worker that has not reported by then is abandoned and counted as a
        failed subscription.
        """
        deadline = time.monotonic() + timeout
        reported: dict[str, WorkerStatus] = {}
        while len(reported) < len(self._workers):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                status = self._results.get(timeout=remaining)
            except queue.Empty:
                break
            reported[status.name] = status

        statuses = []
        for worker in self._workers:
            status = reported.get(worker.name)
            if status is None:
                worker.abandon()
                status = WorkerStatus(
                    worker.name,
                    started=False,
                    error=SubscriptionError(
                        sorted(worker.loop.table.input_universes),
                        f"no startup report within {timeout}s",
                    ),
                )
            statuses.append(status)
        return statuses

    def wait(self) -> None:
        """Block until the relay stops (stop() or KeyboardInterrupt)."""
        if self.mode is RelayMode.SHARED:
            if self._loops:
                self._loops[0].run(self._stop_event)
            return

        # Poll so the main thread still sees KeyboardInterrupt.
        while any(worker.is_alive() for worker in self._workers):
            for worker in self._workers:
                worker.join(timeout=JOIN_POLL_S)

    def stop(self, timeout: float = 2.0) -> None:
        """Signal every loop to stop and join worker threads."""
        self._stop_event.set()
        for worker in self._workers:
            worker.join(timeout=timeout)

    def run(self) -> None:
        """Start and relay until interrupted."""
        try:
            self.start()
            self.wait()
        except KeyboardInterrupt:
            logger.info("Interrupted, stopping relay")
        finally:
            self.stop()
            if self.mode is RelayMode.SHARED:
                for loop in self._loops:
                    if loop.state is not RelayState.STOPPED:
                        loop.close()

    def get_stats(self) -> dict:
        """Per-loop statistics."""
        return {loop.name: loop.get_stats() for loop in self._loops}
