from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

_REQ_COUNT = Counter(
    "hostcraft_http_requests_total",
    "Total HTTP requests",
    labelnames=("method", "path", "status"),
)
_REQ_LATENCY = Histogram(
    "hostcraft_http_request_duration_seconds",
    "HTTP request latency seconds",
    labelnames=("method", "path"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.3, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)
_REMOTE_COMMANDS = Counter(
    "hostcraft_remote_commands_total",
    "Remote commands executed over SSH",
    labelnames=("result",),
)
_REMOTE_COMMAND_LATENCY = Histogram(
    "hostcraft_remote_command_duration_seconds",
    "Remote command latency seconds",
    buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 15.0, 60.0, 300.0, 900.0),
)
_ENGINE_OPS = Counter(
    "hostcraft_engine_operations_total",
    "Container engine operations",
    labelnames=("action", "result"),
)
_DEPLOYMENTS = Counter(
    "hostcraft_deployments_total",
    "Deployment records reaching a terminal status",
    labelnames=("action", "status"),
)
_BACKUPS = Counter(
    "hostcraft_backups_total",
    "Backup jobs reaching a terminal status",
    labelnames=("type", "status"),
)
_HEALTH_CHECKS = Counter(
    "hostcraft_health_checks_total",
    "Health check samples recorded",
    labelnames=("target", "status"),
)
_RECOVERIES = Counter(
    "hostcraft_recoveries_total",
    "Automatic recovery attempts",
    labelnames=("action", "result"),
)


def observe_http_request(*, method: str, path: str, status: int, duration_seconds: float) -> None:
    _REQ_COUNT.labels(method=method, path=path, status=str(status)).inc()
    _REQ_LATENCY.labels(method=method, path=path).observe(duration_seconds)


def record_remote_command(*, result: str, duration_seconds: float) -> None:
    _REMOTE_COMMANDS.labels(result=result).inc()
    _REMOTE_COMMAND_LATENCY.observe(duration_seconds)


def record_engine_operation(*, action: str, ok: bool) -> None:
    _ENGINE_OPS.labels(action=action, result="ok" if ok else "error").inc()


def record_deployment(*, action: str, status: str) -> None:
    _DEPLOYMENTS.labels(action=action, status=status).inc()


def record_backup(*, backup_type: str, status: str) -> None:
    _BACKUPS.labels(type=backup_type, status=status).inc()


def record_health_check(*, target: str, status: str) -> None:
    _HEALTH_CHECKS.labels(target=target, status=status).inc()


def record_recovery(*, action: str, ok: bool) -> None:
    _RECOVERIES.labels(action=action, result="ok" if ok else "error").inc()


def render_metrics() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
