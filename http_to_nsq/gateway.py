"""HTTP ingestion surface.

POST /<topic> publishes the raw request body to that NSQ topic.
GET /metrics serves the Prometheus exposition.
"""

import threading
import time
from typing import Protocol

import structlog
from flask import Flask, Response, g, request
from werkzeug.serving import make_server

from http_to_nsq.metrics import ERROR, OK, RequestMetrics
from http_to_nsq.publisher import PublishError

log = structlog.get_logger()

METRICS_PATH = "/metrics"


class MessagePublisher(Protocol):
    def publish(self, topic: str, payload: bytes) -> None:
        ...


def create_app(publisher: MessagePublisher, metrics: RequestMetrics) -> Flask:
    """Build the Flask app around an already started publisher."""
    app = Flask(__name__)

    @app.before_request
    def _start_timer() -> None:
        g.start_time = time.monotonic()

    @app.before_request
    def _reject_empty_topic() -> Response | None:
        # Runs ahead of routing errors, so "//" is refused here rather than
        # redirected to "/"
        if request.method == "POST" and not request.path.strip("/"):
            g.topic = ""
            metrics.increment(ERROR, "")
            return Response(status=400)
        return None

    @app.after_request
    def _access_log(response: Response) -> Response:
        # One entry per request; bodies are never logged and scrapes not at all
        if request.path == METRICS_PATH and request.method == "GET":
            return response

        fields = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "latency_seconds": round(time.monotonic() - g.get("start_time", time.monotonic()), 6),
            "remote_addr": request.remote_addr,
        }
        if "topic" in g:
            fields["topic"] = g.topic
        if "publish_error" in g:
            fields["error"] = g.publish_error

        if response.status_code >= 500:
            log.error("http_request", **fields)
        else:
            log.info("http_request", **fields)
        return response

    @app.route(METRICS_PATH, methods=["GET"])
    def scrape() -> Response:
        body, content_type = metrics.exposition()
        return Response(body, status=200, content_type=content_type)

    @app.route("/<topic>", methods=["POST"])
    def publish(topic: str) -> Response:
        g.topic = topic
        body = request.get_data(cache=False)
        try:
            publisher.publish(topic, body)
        except PublishError as e:
            metrics.increment(ERROR, topic)
            g.publish_error = str(e)
            return Response(status=500)

        metrics.increment(OK, topic)
        return Response(status=200)

    return app


class GatewayServer:
    """Threaded WSGI server that can drain in-flight requests on stop."""

    def __init__(self, app: Flask, host: str = "0.0.0.0", port: int = 4252) -> None:
        self._server = make_server(host, port, app, threaded=True)
        # Track request threads so server_close() waits for them
        self._server.daemon_threads = False
        self._server.block_on_close = True
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        return self._server.server_port

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="gateway",
            daemon=True,
        )
        self._thread.start()
        log.info("server_listening", port=self.port)

    def stop(self, timeout: float = 30.0) -> bool:
        """Stop accepting connections and wait for in-flight requests.

        Returns:
            True if the server drained within ``timeout`` seconds.
        """
        closer = threading.Thread(target=self._close, name="gateway-drain", daemon=True)
        closer.start()
        closer.join(timeout)
        return not closer.is_alive()

    def _close(self) -> None:
        if self._thread is not None:
            self._server.shutdown()
        self._server.server_close()
