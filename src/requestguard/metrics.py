#!/usr/bin/env python3
"""Prometheus metrics for the request guard."""

import logging
from typing import Dict

from prometheus_client import Counter, Gauge, start_http_server

REQUEST_COUNT = Counter(
    'requestguard_requests_total', 'Requests processed by the security pipeline',
    ['decision'],
)
BLOCKED_REQUESTS = Counter(
    'requestguard_blocked_requests_total', 'Blocked requests',
    ['reason'],
)
DETECTOR_HITS = Counter(
    'requestguard_detector_hits_total', 'Detector hits',
    ['detector'],
)
SECURITY_EVENTS = Counter(
    'requestguard_security_events_total', 'Security events',
    ['event_type', 'severity'],
)
BANNED_IDENTITIES = Gauge(
    'requestguard_banned_identities', 'Identities currently banned',
)


def start_metrics_server(config: Dict) -> bool:
    """
    Start the Prometheus exporter if enabled in configuration.

    Returns:
        True if the exporter was started
    """
    logger = logging.getLogger(__name__)
    metrics_config = config.get('metrics', {}) or {}
    if not metrics_config.get('enabled', False):
        return False

    port = int(metrics_config.get('port', 9090))
    bind_host = metrics_config.get('bind_host', '127.0.0.1')
    start_http_server(port, addr=bind_host)
    logger.info(f"Metrics server started on {bind_host}:{port}")

    if bind_host == '0.0.0.0':
        logger.warning(
            "SECURITY WARNING: Metrics endpoint exposed to all interfaces. "
            "Restrict access using firewall rules or reverse proxy authentication."
        )
    return True
