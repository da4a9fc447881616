"""
HTTP to NSQ bridge

Startup order:
1. Parse configuration and configure logging
2. Register the request counter
3. Connect to NSQ (fatal if the handshake fails)
4. Start the HTTP gateway
5. Block until SIGINT/SIGTERM, then drain the gateway and close NSQ
"""

import sys
from collections.abc import Sequence

import structlog

from http_to_nsq.config import Config
from http_to_nsq.gateway import GatewayServer, create_app
from http_to_nsq.logconfig import configure_logging
from http_to_nsq.metrics import RequestMetrics
from http_to_nsq.nsq_log import nsq_log_level
from http_to_nsq.publisher import Publisher, PublisherStartupError, select_strategy
from http_to_nsq.shutdown import ShutdownError, ShutdownOrchestrator

log = structlog.get_logger()


def main(argv: Sequence[str] | None = None) -> int:
    """Run the bridge until a termination signal arrives."""
    config = Config.from_args(argv)
    configure_logging(config.log_level)

    metrics = RequestMetrics(host=config.broker_host, runtime_metrics=config.runtime_metrics)

    publisher = Publisher(
        select_strategy(config),
        log_level=nsq_log_level(config.log_level),
        connect_timeout=config.connect_timeout_seconds,
    )
    try:
        publisher.start()
    except PublisherStartupError as e:
        log.critical("nsq_connect_failed", error=str(e), address=config.broker_address)
        return 1

    app = create_app(publisher, metrics)
    try:
        gateway = GatewayServer(app, host=config.host, port=config.port)
    except (OSError, SystemExit) as e:
        # werkzeug exits on bind errors after printing the reason
        log.critical("listen_failed", port=config.port, error=str(e))
        publisher.stop()
        return 1

    orchestrator = ShutdownOrchestrator(
        gateway,
        publisher,
        grace_period=config.shutdown_grace_seconds,
    )
    orchestrator.install_signal_handlers()
    gateway.start()

    try:
        orchestrator.wait()
    except ShutdownError:
        # Already logged; in-flight requests are abandoned
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
