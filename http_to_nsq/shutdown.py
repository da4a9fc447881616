"""Signal-driven graceful shutdown.

On SIGINT or SIGTERM the gateway stops accepting connections and drains
in-flight requests; only then is the NSQ session closed, so every request
that was accepted gets its publish answered.
"""

import enum
import signal
import threading
from typing import Any, Protocol

import structlog

log = structlog.get_logger()


class State(enum.Enum):
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class ShutdownError(Exception):
    """The gateway did not drain within the grace period."""


class Drainable(Protocol):
    def stop(self, timeout: float) -> bool:
        ...


class Stoppable(Protocol):
    def stop(self) -> None:
        ...


class ShutdownOrchestrator:
    """One-shot RUNNING -> DRAINING -> STOPPED sequence."""

    def __init__(
        self,
        gateway: Drainable,
        publisher: Stoppable,
        grace_period: float = 30.0,
    ) -> None:
        self.gateway = gateway
        self.publisher = publisher
        self.grace_period = grace_period
        self.state = State.RUNNING
        self._triggered = threading.Event()

    def install_signal_handlers(self) -> None:
        """Register for SIGINT and SIGTERM. Main thread only."""
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def _handle_signal(self, signum: int, frame: Any) -> None:
        log.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        self.trigger()

    def trigger(self) -> None:
        """Start the shutdown. Later calls are no-ops."""
        if self._triggered.is_set():
            log.debug("shutdown_already_triggered", state=self.state.value)
            return
        self._triggered.set()

    def wait(self) -> None:
        """Block until triggered, then drain the gateway and the publisher.

        Raises:
            ShutdownError: If the gateway did not drain within the grace period.
        """
        self._triggered.wait()

        self.state = State.DRAINING
        log.info("graceful_shutdown_starting", grace_period_seconds=self.grace_period)

        if not self.gateway.stop(self.grace_period):
            log.critical("gateway_shutdown_failed", grace_period_seconds=self.grace_period)
            raise ShutdownError(f"gateway did not drain within {self.grace_period}s")

        self.publisher.stop()
        self.state = State.STOPPED
        log.info("server_exiting")
