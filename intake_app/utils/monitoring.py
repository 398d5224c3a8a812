# intake_app/utils/monitoring.py
"""
Health check and Prometheus exposition endpoints.
"""

import time
from datetime import datetime, timezone

from flask import Response, current_app, jsonify
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from intake_app.models import db


class HealthChecker:
    """Database-backed liveness check."""

    def __init__(self, app=None):
        self.app = app
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app

    def basic_health_check(self):
        started = time.perf_counter()
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            current_app.logger.error("Health check database query failed: %s", exc)
            return jsonify({"status": "unhealthy", "error": str(exc)}), 503
        except Exception as exc:  # pragma: no cover - unexpected driver failures
            current_app.logger.exception("Health check failed unexpectedly.")
            return jsonify({"status": "unhealthy", "error": str(exc)}), 503

        return (
            jsonify(
                {
                    "status": "healthy",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "app": current_app.config.get("APP_NAME"),
                    "version": current_app.config.get("APP_VERSION"),
                    "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
                }
            ),
            200,
        )


def init_monitoring(app):
    """Register ``/health`` and, when monitoring is enabled, the metrics endpoint."""

    health_checker = HealthChecker(app)
    app.extensions["health_checker"] = health_checker

    if "health" not in app.view_functions:
        app.add_url_rule("/health", "health", health_checker.basic_health_check)

    if not app.config.get("MONITORING_ENABLED", False):
        return health_checker

    endpoint = app.config.get("METRICS_ENDPOINT", "/metrics")

    def metrics():
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)

    if "metrics" not in app.view_functions:
        app.add_url_rule(endpoint, "metrics", metrics)
    app.logger.info("Prometheus metrics exposed at %s", endpoint)
    return health_checker
