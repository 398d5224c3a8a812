# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Monitoring and logging configuration"""

    # Monitoring Configuration
    MONITORING_ENABLED = os.environ.get("MONITORING_ENABLED", "false").lower() == "true"
    METRICS_ENDPOINT = os.environ.get("METRICS_ENDPOINT", "/metrics")

    # Logging Configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10485760))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    # Console and File Logging
    ENABLE_FILE_LOGGING = os.environ.get("ENABLE_FILE_LOGGING", "true").lower() == "true"
    ENABLE_CONSOLE_LOGGING = os.environ.get("ENABLE_CONSOLE_LOGGING", "true").lower() == "true"

    # Application Info
    APP_NAME = os.environ.get("APP_NAME", "Lead Intake")
    APP_VERSION = os.environ.get("APP_VERSION", "0.1.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    """Development-specific monitoring configuration"""

    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"  # More readable in development
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True


class ProductionMonitoringConfig(MonitoringConfig):
    """Production-specific monitoring configuration"""

    MONITORING_ENABLED = True
    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"  # Structured logging for production
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False  # Usually handled by container orchestration


class TestingMonitoringConfig(MonitoringConfig):
    """Testing-specific monitoring configuration"""

    MONITORING_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False


class ImporterMonitoring:
    """Prometheus metric helpers for importer API endpoints."""

    LEAD_ACTION_COUNTER = Counter(
        "importer_lead_action_requests_total",
        "Total lead import API requests by action and status.",
        labelnames=("action", "status"),
    )
    LEAD_ACTION_LATENCY = Histogram(
        "importer_lead_action_request_seconds",
        "Latency histogram for lead import API actions.",
        labelnames=("action", "status"),
        buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
    )

    RUNS_LIST_COUNTER = Counter(
        "importer_runs_list_requests_total",
        "Total importer runs list API requests.",
        labelnames=("status",),
    )
    RUNS_LIST_LATENCY = Histogram(
        "importer_runs_list_request_seconds",
        "Latency histogram for importer runs list API.",
        labelnames=("status",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
    )
    RUNS_LIST_RESULT_SIZE = Histogram(
        "importer_runs_list_result_size",
        "Number of runs returned by list endpoint.",
        labelnames=("status",),
        buckets=(0, 1, 5, 10, 25, 50, 100, 250, 500),
    )

    RUNS_DETAIL_COUNTER = Counter(
        "importer_runs_detail_requests_total",
        "Total importer run detail API requests.",
        labelnames=("status",),
    )
    RUNS_DETAIL_LATENCY = Histogram(
        "importer_runs_detail_request_seconds",
        "Latency histogram for importer run detail API.",
        labelnames=("status",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
    )

    ERROR_REPORT_COUNTER = Counter(
        "importer_error_report_requests_total",
        "Total importer error report downloads.",
        labelnames=("status",),
    )

    @classmethod
    def record_lead_action(cls, *, action: str, duration_seconds: float, status: str):
        cls.LEAD_ACTION_COUNTER.labels(action=action, status=status).inc()
        cls.LEAD_ACTION_LATENCY.labels(action=action, status=status).observe(max(duration_seconds, 0.0))

    @classmethod
    def record_runs_list(cls, *, duration_seconds: float, status: str, result_count: int):
        cls.RUNS_LIST_COUNTER.labels(status=status).inc()
        cls.RUNS_LIST_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))
        cls.RUNS_LIST_RESULT_SIZE.labels(status=status).observe(float(max(result_count, 0)))

    @classmethod
    def record_runs_detail(cls, *, duration_seconds: float, status: str):
        cls.RUNS_DETAIL_COUNTER.labels(status=status).inc()
        cls.RUNS_DETAIL_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))

    @classmethod
    def record_error_report(cls, *, status: str):
        cls.ERROR_REPORT_COUNTER.labels(status=status).inc()
