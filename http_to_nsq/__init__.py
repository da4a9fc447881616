"""
http-to-nsq - An HTTP ingestion bridge for NSQ.

Accepts POST requests on /<topic> and publishes the raw request body as a
message on that NSQ topic. Exposes Prometheus metrics on /metrics.

Usage:
    python -m http_to_nsq --nsqd-tcp-address localhost:4150

Environment Variables:
    HTTP_TO_NSQ_PORT: HTTP listening port (default: 4252)
    NSQD_TCP_ADDRESS: nsqd TCP address (default: localhost:4150)
    LOOKUPD_HTTP_ADDRESS: nsqlookupd HTTP address (overrides nsqd address)
    LOG_LEVEL: debug, info, warning, error or critical (default: info)
"""

__version__ = "0.1.0"
