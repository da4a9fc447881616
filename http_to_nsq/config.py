"""Configuration loaded from command-line flags and environment variables."""

import argparse
import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass

APP_NAME = "http_to_nsq"

# --log values. The Go-style names (warn, dpanic, panic, fatal) are accepted
# too and map onto the nearest stdlib level.
LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "dpanic": logging.CRITICAL,
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


def _env_flag(name: str) -> bool:
    """Read a boolean environment variable."""
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Bridge configuration."""

    # HTTP
    port: int = 4252
    host: str = "0.0.0.0"

    # NSQ - a non-empty lookupd address takes precedence over the nsqd address
    nsqd_tcp_address: str = "localhost:4150"
    lookupd_http_address: str = ""
    connect_timeout_seconds: float = 5.0

    # Observability
    runtime_metrics: bool = False
    log_level: str = "info"

    # Shutdown
    shutdown_grace_seconds: float = 30.0

    @property
    def uses_lookupd(self) -> bool:
        return bool(self.lookupd_http_address)

    @property
    def broker_address(self) -> str:
        """Address of the broker endpoint actually in use."""
        return self.lookupd_http_address if self.uses_lookupd else self.nsqd_tcp_address

    @property
    def broker_host(self) -> str:
        """Host part of the broker address, used as a constant metrics label."""
        address = self.broker_address.split("://", 1)[-1]
        return address.split(":")[0]

    @classmethod
    def from_args(cls, argv: Sequence[str] | None = None) -> "Config":
        """Parse flags, falling back to environment variables then defaults."""
        parser = argparse.ArgumentParser(
            prog="http-to-nsq",
            description="Publish HTTP POST bodies to NSQ topics",
        )
        parser.add_argument(
            "--port",
            type=int,
            default=int(os.environ.get("HTTP_TO_NSQ_PORT", cls.port)),
            help="HTTP port (default: %(default)s)",
        )
        parser.add_argument(
            "--host",
            default=os.environ.get("HTTP_TO_NSQ_HOST", cls.host),
            help="HTTP bind address (default: %(default)s)",
        )
        parser.add_argument(
            "--nsqd-tcp-address",
            default=os.environ.get("NSQD_TCP_ADDRESS", cls.nsqd_tcp_address),
            help="nsqd TCP address (default: %(default)s)",
        )
        parser.add_argument(
            "--lookupd-http-address",
            default=os.environ.get("LOOKUPD_HTTP_ADDRESS", cls.lookupd_http_address),
            help="nsqlookupd HTTP address, overrides --nsqd-tcp-address when set",
        )
        parser.add_argument(
            "--connect-timeout",
            type=float,
            default=float(os.environ.get("CONNECT_TIMEOUT_SECONDS", cls.connect_timeout_seconds)),
            help="Seconds to wait for the initial NSQ handshake (default: %(default)s)",
        )
        parser.add_argument(
            "--runtime-metrics",
            "--gom",
            action="store_true",
            default=_env_flag("RUNTIME_METRICS"),
            help="Expose Python process and GC metrics",
        )
        parser.add_argument(
            "--log",
            choices=list(LOG_LEVELS),
            type=str.lower,
            default=os.environ.get("LOG_LEVEL", cls.log_level).lower(),
            help="Log level (default: %(default)s)",
        )
        parser.add_argument(
            "--shutdown-grace",
            type=float,
            default=float(os.environ.get("SHUTDOWN_GRACE_SECONDS", cls.shutdown_grace_seconds)),
            help="Seconds to wait for in-flight requests on shutdown (default: %(default)s)",
        )
        args = parser.parse_args(argv)
        # argparse does not check defaults against choices
        if args.log not in LOG_LEVELS:
            parser.error(f"invalid log level {args.log!r} (choose from {', '.join(LOG_LEVELS)})")

        return cls(
            port=args.port,
            host=args.host,
            nsqd_tcp_address=args.nsqd_tcp_address,
            lookupd_http_address=args.lookupd_http_address.strip(),
            connect_timeout_seconds=args.connect_timeout,
            runtime_metrics=args.runtime_metrics,
            log_level=args.log,
            shutdown_grace_seconds=args.shutdown_grace,
        )
