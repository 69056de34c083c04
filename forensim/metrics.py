"""Prometheus metrics exporter for Forensim.

This module provides Prometheus-compatible metrics for monitoring learner
activity on the training console.

Metrics exposed:
- Console sessions (total, active, duration)
- Commands executed (by command and outcome)
- Task submissions (by outcome) and submission latency
- Badges awarded, hints requested, device mounts
"""

from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from . import __version__

logger = logging.getLogger(__name__)

# =============================================================================
# Metric Definitions
# =============================================================================

# Session metrics
sessions_total = Counter(
    "forensim_sessions_total",
    "Total number of console sessions started",
    ["transport"],  # ssh, local
)

sessions_active = Gauge(
    "forensim_sessions_active",
    "Currently active console sessions",
)

session_duration = Histogram(
    "forensim_session_duration_seconds",
    "Console session duration in seconds",
    buckets=[10, 30, 60, 300, 600, 1800, 3600, 7200],
)

# Command execution metrics
commands_total = Counter(
    "forensim_commands_total",
    "Total number of console commands executed",
    ["command", "result"],  # result: ok, error
)

# Task metrics
task_submissions_total = Counter(
    "forensim_task_submissions_total",
    "Task evidence submissions",
    ["result"],  # correct, incorrect, already_completed, in_flight, failed
)

submission_latency = Histogram(
    "forensim_submission_latency_seconds",
    "Time spent processing a task submission",
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
)

scenarios_completed_total = Counter(
    "forensim_scenarios_completed_total",
    "Scenarios finished by learners",
    ["scenario"],
)

# Reward metrics
badges_awarded_total = Counter(
    "forensim_badges_awarded_total",
    "Badges awarded",
    ["badge"],
)

hints_requested_total = Counter(
    "forensim_hints_requested_total",
    "Hint requests",
    ["result"],  # granted, insufficient_points, unavailable
)

# Device metrics
mounts_total = Counter(
    "forensim_mounts_total",
    "Mount and unmount operations",
    ["operation", "result"],
)

# System health metrics
system_info = Info(
    "forensim_system",
    "Forensim system information",
)

uptime_seconds = Gauge(
    "forensim_uptime_seconds",
    "Service uptime in seconds",
)


# =============================================================================
# Metrics Collector Class
# =============================================================================


class MetricsCollector:
    """Centralized metrics collection and management."""

    def __init__(self):
        self._lock = Lock()
        self._start_time = time.time()
        self._active_sessions = 0

        system_info.info({"version": __version__})

        logger.info("Prometheus metrics collector initialized")

    # -------------------------------------------------------------------------
    # Session Metrics
    # -------------------------------------------------------------------------

    def record_session_start(self, transport: str = "ssh"):
        """Record the start of a console session.

        Args:
            transport: 'ssh' or 'local'
        """
        sessions_total.labels(transport=transport).inc()
        sessions_active.inc()
        with self._lock:
            self._active_sessions += 1
        logger.debug("Session started over %s", transport)

    def record_session_end(self, duration_seconds: float):
        """Record the end of a console session.

        Args:
            duration_seconds: Session duration in seconds
        """
        sessions_active.dec()
        session_duration.observe(duration_seconds)
        with self._lock:
            self._active_sessions = max(0, self._active_sessions - 1)
        logger.debug("Session ended: duration=%.1fs", duration_seconds)

    @property
    def active_sessions(self) -> int:
        with self._lock:
            return self._active_sessions

    # -------------------------------------------------------------------------
    # Command Metrics
    # -------------------------------------------------------------------------

    def record_command(self, command: str, ok: bool):
        """Record a command execution.

        Args:
            command: Program name (first token)
            ok: Whether the command finished without error
        """
        commands_total.labels(command=command or "empty", result="ok" if ok else "error").inc()

    # -------------------------------------------------------------------------
    # Task Metrics
    # -------------------------------------------------------------------------

    def record_submission(self, result: str, latency: Optional[float] = None):
        """Record a task submission.

        Args:
            result: 'correct', 'incorrect', 'already_completed', 'in_flight' or 'failed'
            latency: Processing time in seconds (optional)
        """
        task_submissions_total.labels(result=result).inc()
        if latency is not None:
            submission_latency.observe(latency)
        logger.debug("Submission recorded: result=%s", result)

    def record_scenario_completed(self, scenario_id: str):
        scenarios_completed_total.labels(scenario=scenario_id).inc()

    def record_badge(self, badge: str):
        badges_awarded_total.labels(badge=badge).inc()

    def record_hint(self, result: str):
        hints_requested_total.labels(result=result).inc()

    def record_mount(self, operation: str, ok: bool):
        """Record a mount or unmount.

        Args:
            operation: 'mount' or 'umount'
            ok: Whether it succeeded
        """
        mounts_total.labels(operation=operation, result="ok" if ok else "error").inc()

    # -------------------------------------------------------------------------
    # System Metrics
    # -------------------------------------------------------------------------

    def update_uptime(self):
        """Update the uptime metric."""
        uptime_seconds.set(time.time() - self._start_time)

    def get_metrics(self) -> bytes:
        """Generate Prometheus metrics in text format.

        Returns:
            Metrics in Prometheus exposition format
        """
        self.update_uptime()
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


# =============================================================================
# Global Metrics Instance
# =============================================================================

_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance.

    Returns:
        Global MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics_collector():
    """Reset the global metrics collector (for testing)."""
    global _metrics_collector
    _metrics_collector = None


# =============================================================================
# HTTP Server for Metrics Endpoint
# =============================================================================


def start_metrics_server(port: int = 9090, host: str = "0.0.0.0"):
    """Start HTTP server for Prometheus metrics endpoint.

    Args:
        port: Port to listen on
        host: Host address to bind to
    """
    from http.server import BaseHTTPRequestHandler, HTTPServer
    from threading import Thread

    collector = get_metrics_collector()

    class MetricsHandler(BaseHTTPRequestHandler):
        def do_GET(self):
            if self.path == "/metrics":
                self.send_response(200)
                self.send_header("Content-Type", collector.get_content_type())
                self.end_headers()
                self.wfile.write(collector.get_metrics())
            elif self.path == "/health":
                self.send_response(200)
                self.send_header("Content-Type", "text/plain")
                self.end_headers()
                self.wfile.write(b"OK\n")
            else:
                self.send_response(404)
                self.end_headers()
                self.wfile.write(b"Not Found\n")

        def log_message(self, format, *args):
            # Suppress default logging
            pass

    server = HTTPServer((host, port), MetricsHandler)

    def serve():
        logger.info("Metrics server started on http://%s:%d/metrics", host, port)
        server.serve_forever()

    thread = Thread(target=serve, daemon=True, name="MetricsServer")
    thread.start()

    return server
