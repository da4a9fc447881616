"""End-to-end: bridge process -> nsqd -> consumer.

Needs a running nsqd:
    NSQD_TCP_ADDRESS=localhost:4150 pytest -m e2e
"""

from __future__ import annotations

import asyncio
import os
import queue
import signal
import socket
import subprocess
import sys
import threading
import time
from concurrent.futures import Future
from datetime import datetime, timezone

import httpx
import nsq
import pytest
from tornado.ioloop import IOLoop

NSQD_TCP_ADDRESS = os.environ.get("NSQD_TCP_ADDRESS", "")

pytestmark = [
    pytest.mark.e2e,
    pytest.mark.skipif(not NSQD_TCP_ADDRESS, reason="NSQD_TCP_ADDRESS not set"),
]


class Consumer:
    """pynsq Reader on its own I/O thread, collecting message bodies."""

    def __init__(self, topic: str, channel: str, address: str) -> None:
        self.messages: queue.Queue[bytes] = queue.Queue()
        started: Future = Future()
        self._thread = threading.Thread(
            target=asyncio.run,
            args=(self._run(topic, channel, address, started),),
            daemon=True,
        )
        self._thread.start()
        started.result(timeout=5)

    async def _run(self, topic: str, channel: str, address: str, started: Future) -> None:
        self._io_loop = IOLoop.current()
        self._done = asyncio.Event()
        self._reader = nsq.Reader(
            topic=topic,
            channel=channel,
            message_handler=self._handle,
            nsqd_tcp_addresses=[address],
        )
        started.set_result(None)
        await self._done.wait()

    def _handle(self, message) -> bool:
        self.messages.put(bytes(message.body))
        return True

    def close(self) -> None:
        self._io_loop.add_callback(self._close)
        self._thread.join(timeout=5)

    def _close(self) -> None:
        self._reader.close()
        self._done.set()


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture(scope="module")
def topic() -> str:
    return "test_" + datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")


@pytest.fixture(scope="module")
def consumer(topic):
    c = Consumer(topic, "channel", NSQD_TCP_ADDRESS)
    # give the reader time to subscribe
    time.sleep(1)
    yield c
    c.close()


@pytest.fixture(scope="module")
def bridge_url():
    port = _free_port()
    proc = subprocess.Popen([
        sys.executable, "-m", "http_to_nsq",
        "--port", str(port),
        "--nsqd-tcp-address", NSQD_TCP_ADDRESS,
    ])
    url = f"http://127.0.0.1:{port}"

    deadline = time.monotonic() + 10
    while True:
        try:
            httpx.get(f"{url}/metrics", timeout=1)
            break
        except httpx.TransportError:
            if time.monotonic() > deadline or proc.poll() is not None:
                proc.kill()
                pytest.fail("bridge did not start")
            time.sleep(0.1)

    yield url

    proc.send_signal(signal.SIGINT)
    assert proc.wait(timeout=10) == 0


def test_post_message(bridge_url, consumer, topic):
    r = httpx.post(f"{bridge_url}/{topic}", content=b"message", headers={"Content-Type": "text/plain"})

    assert r.status_code == 200
    assert consumer.messages.get(timeout=5) == b"message"


def test_metrics_reflect_publish(bridge_url, consumer, topic):
    httpx.post(f"{bridge_url}/{topic}", content=b"again")
    consumer.messages.get(timeout=5)

    body = httpx.get(f"{bridge_url}/metrics").text

    assert f'status="ok",topic="{topic}"' in body
