"""NSQ publisher.

Owns the bridge's single session to NSQ. pynsq is built on the tornado
IOLoop and is not thread-safe, so the writer lives on a dedicated broker
thread and every call into it is marshalled with ``IOLoop.add_callback``
(the one thread-safe IOLoop method). Request threads block on a
``concurrent.futures.Future`` until nsqd answers.

Two ways to find nsqd:
- NsqdStrategy: a fixed nsqd TCP address
- LookupdStrategy: ask nsqlookupd which nsqd nodes are registered
"""

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, TimeoutError as FuturesTimeoutError
from concurrent.futures import wait as wait_futures
from typing import Any, Protocol

import httpx
import nsq
import structlog
from tornado.ioloop import IOLoop

from http_to_nsq.config import Config
from http_to_nsq.nsq_log import NsqLogAdapter

log = structlog.get_logger()


class PublisherError(Exception):
    """Base exception for publisher errors."""


class PublisherStartupError(PublisherError):
    """The session to NSQ could not be established."""


class PublishError(PublisherError):
    """A message could not be published."""


class ConnectionStrategy(Protocol):
    via: str
    address: str

    def resolve(self) -> list[str]:
        """Return the nsqd TCP addresses to connect to."""
        ...


class NsqdStrategy:
    """Connect straight to one nsqd."""

    via = "nsqd"

    def __init__(self, address: str) -> None:
        self.address = address

    def resolve(self) -> list[str]:
        return [self.address]


class LookupdStrategy:
    """Discover nsqd nodes through the nsqlookupd HTTP API."""

    via = "nsqlookupd"

    def __init__(
        self,
        address: str,
        http_client: httpx.Client | None = None,
        timeout: float = 5.0,
    ) -> None:
        self.address = address
        self._http_client = http_client
        self._timeout = timeout

    @property
    def nodes_url(self) -> str:
        base = self.address if "://" in self.address else f"http://{self.address}"
        return f"{base.rstrip('/')}/nodes"

    def resolve(self) -> list[str]:
        """Query /nodes and return each producer's broadcast TCP address.

        Raises:
            PublisherStartupError: If lookupd is unreachable or knows no nodes.
        """
        try:
            if self._http_client is not None:
                body = self._fetch_nodes(self._http_client)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    body = self._fetch_nodes(client)
        except (httpx.HTTPError, ValueError) as e:
            raise PublisherStartupError(f"nsqlookupd query failed: {e}") from e

        # nsqlookupd before 1.0 wraps the payload in {"status_code", "data"}
        data = body.get("data", body) if isinstance(body, dict) else {}
        try:
            addresses = sorted({
                f"{p['broadcast_address']}:{p['tcp_port']}"
                for p in data.get("producers") or []
            })
        except (KeyError, TypeError) as e:
            raise PublisherStartupError(f"unexpected nsqlookupd response: {body!r}") from e

        if not addresses:
            raise PublisherStartupError(f"no nsqd nodes registered with nsqlookupd at {self.address}")

        log.debug("nsqd_nodes_discovered", lookupd=self.address, nodes=addresses)
        return addresses

    def _fetch_nodes(self, client: httpx.Client) -> Any:
        response = client.get(
            self.nodes_url,
            headers={"Accept": "application/vnd.nsq; version=1.0"},
        )
        response.raise_for_status()
        return response.json()


def select_strategy(config: Config, http_client: httpx.Client | None = None) -> ConnectionStrategy:
    """Pick the connection strategy; a lookupd address wins over nsqd."""
    if config.uses_lookupd:
        if config.nsqd_tcp_address != Config.nsqd_tcp_address:
            log.info(
                "nsqd_address_ignored",
                nsqd_tcp_address=config.nsqd_tcp_address,
                reason="lookupd_http_address is set",
            )
        return LookupdStrategy(
            config.lookupd_http_address,
            http_client=http_client,
            timeout=config.connect_timeout_seconds,
        )
    return NsqdStrategy(config.nsqd_tcp_address)


class Publisher:
    """Synchronous publish facade over a pynsq Writer."""

    def __init__(
        self,
        strategy: ConnectionStrategy,
        log_level: int = logging.INFO,
        connect_timeout: float = 5.0,
        log_adapter: NsqLogAdapter | None = None,
        writer_factory: Callable[..., Any] = nsq.Writer,
    ) -> None:
        self.strategy = strategy
        self.connect_timeout = connect_timeout
        self.addresses: list[str] = []

        self._log_adapter = log_adapter if log_adapter is not None else NsqLogAdapter()
        self._log_adapter.setLevel(log_level)
        self._writer_factory = writer_factory

        self._io_loop: IOLoop | None = None
        self._writer: Any = None
        self._closed: asyncio.Event | None = None
        self._thread: threading.Thread | None = None

        # Guards _running and _pending so stop() can't miss a publish
        self._lock = threading.Lock()
        self._running = False
        self._pending: set[Future] = set()

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Connect to NSQ and check the session.

        Raises:
            PublisherStartupError: If no nsqd connection can be established.
        """
        log.info("connecting_to_nsq", via=self.strategy.via, address=self.strategy.address)
        self.addresses = self.strategy.resolve()
        self._log_adapter.install()

        started: Future = Future()
        self._thread = threading.Thread(
            target=asyncio.run,
            args=(self._serve(started),),
            name="nsq-io",
            daemon=True,
        )
        self._thread.start()

        try:
            started.result(timeout=self.connect_timeout)
        except Exception as e:
            self.stop()
            raise PublisherStartupError(f"failed to create NSQ writer: {e!r}") from e

        with self._lock:
            self._running = True

        try:
            self.ping()
        except PublisherStartupError:
            self.stop()
            raise

        log.info("connected_to_nsq", nsqd=self.addresses)

    async def _serve(self, started: Future) -> None:
        """Body of the broker thread: own the writer until stop()."""
        self._io_loop = IOLoop.current()
        self._closed = asyncio.Event()
        try:
            self._writer = self._writer_factory(self.addresses)
        except Exception as e:
            started.set_exception(e)
            return
        started.set_result(None)
        await self._closed.wait()

    def ping(self, timeout: float | None = None) -> None:
        """Wait until an nsqd connection has completed its handshake.

        Raises:
            PublisherStartupError: If none is ready within the timeout.
        """
        timeout = self.connect_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout

        while True:
            try:
                ready = self._call_on_loop(self._has_open_connection).result(timeout=timeout)
            except FuturesTimeoutError as e:
                raise PublisherStartupError("NSQ I/O loop is not responding") from e
            if ready:
                return
            if time.monotonic() >= deadline:
                raise PublisherStartupError(
                    f"no nsqd connection after {timeout}s ({', '.join(self.addresses)})"
                )
            time.sleep(0.05)

    def publish(self, topic: str, payload: bytes) -> None:
        """Publish one message and wait for nsqd to acknowledge it.

        Raises:
            PublishError: With the client-reported reason on failure.
        """
        future: Future = Future()
        with self._lock:
            if not self._running:
                raise PublishError("publisher is not running")
            self._pending.add(future)
        future.add_done_callback(self._forget)

        self._io_loop.add_callback(self._pub, topic, payload, future)
        future.result()

    def stop(self, flush_timeout: float = 5.0) -> None:
        """Close the session once in-flight publishes have settled."""
        with self._lock:
            thread, self._thread = self._thread, None
            if thread is None:
                return
            self._running = False
            pending = list(self._pending)

        if pending:
            _, unflushed = wait_futures(pending, timeout=flush_timeout)
            if unflushed:
                log.warning("nsq_publish_unflushed", count=len(unflushed))

        if self._io_loop is not None and thread.is_alive():
            self._io_loop.add_callback(self._close_writer)
        thread.join(timeout=flush_timeout)

        with self._lock:
            remaining = list(self._pending)
        for future in remaining:
            if not future.done():
                future.set_exception(PublishError("publisher stopped"))

        self._log_adapter.uninstall()
        log.info("nsq_publisher_stopped")

    # Broker thread only below this line

    def _pub(self, topic: str, payload: bytes, future: Future) -> None:
        def _on_response(conn: Any, data: Any) -> None:
            if future.done():
                return
            if isinstance(data, Exception):
                future.set_exception(PublishError(str(data)))
            else:
                future.set_result(None)

        try:
            self._writer.pub(topic, payload, callback=_on_response)
        except Exception as e:
            if not future.done():
                future.set_exception(PublishError(str(e)))

    def _has_open_connection(self) -> bool:
        return any(conn.connected() for conn in self._writer.conns.values())

    def _close_writer(self) -> None:
        if self._writer is not None:
            for conn in list(self._writer.conns.values()):
                conn.close()
        self._closed.set()

    def _call_on_loop(self, fn: Callable[[], Any]) -> Future:
        future: Future = Future()

        def _run() -> None:
            try:
                future.set_result(fn())
            except Exception as e:
                future.set_exception(e)

        self._io_loop.add_callback(_run)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
