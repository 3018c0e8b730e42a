from __future__ import annotations

import hashlib
import json
import logging
import os
import time
import uuid
from datetime import datetime

from flask import g, has_app_context, request

REQUEST_ID_HEADER = "X-Request-Id"
SERVICE_NAME = "tryon-fulfilment"

_SCRUBBED_HEADERS = ("authorization", "cookie", "set-cookie", "idempotency-key", "x-tryon-signature")
# Handoff codes travel in request bodies.
_SCRUBBED_FIELDS = ("code", "otp")
# Path parameters copied into the access log when present.
_LOGGED_VIEW_ARGS = ("order_id", "delivery_id", "txn_id", "provider")

access_logger = logging.getLogger("tryon.access")


def get_request_id() -> str:
    # Services also run from Celery tasks and the ops script.
    if not has_app_context():
        return ""
    return getattr(g, "request_id", "") or ""


def _client_fingerprint(salt: str) -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.remote_addr or "")
    return hashlib.sha256(f"{salt}:{ip}".encode("utf-8")).hexdigest()[:16]


def _sample_rate(raw: str | None) -> float:
    try:
        rate = float((raw or "0").strip())
    except ValueError:
        return 0.0
    return max(0.0, min(rate, 1.0))


def _redact(mapping, keys) -> None:
    if not isinstance(mapping, dict):
        return
    for key in list(mapping.keys()):
        if str(key).lower() in keys:
            mapping[key] = "[REDACTED]"


def _before_send_scrub(event, hint):
    req = event.get("request") or {}
    _redact(req.get("headers"), _SCRUBBED_HEADERS)
    _redact(req.get("data"), _SCRUBBED_FIELDS)
    event["request"] = req
    rid = get_request_id()
    if rid:
        event.setdefault("tags", {})["request_id"] = rid
    return event


def init_sentry(app) -> None:
    """Enable Sentry when SENTRY_DSN is set. Init failures are logged, not raised."""
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        app.logger.info("sentry_disabled_no_dsn")
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=dsn,
            environment=(os.getenv("SENTRY_ENVIRONMENT") or os.getenv("TRYON_ENV") or "dev"),
            release=(os.getenv("GIT_SHA") or "unknown"),
            integrations=[FlaskIntegration()],
            send_default_pii=False,
            traces_sample_rate=_sample_rate(os.getenv("SENTRY_TRACES_SAMPLE_RATE")),
            before_send=_before_send_scrub,
        )
        app.logger.info("sentry_enabled")
    except Exception as e:
        app.logger.warning("sentry_init_failed err=%s", e)


def init_otel(app, *, enabled: bool) -> None:
    """Export Flask and SQLAlchemy spans over OTLP/HTTP. Needs the ``otel`` extra."""
    if not enabled:
        return
    endpoint = (os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or "").strip()
    if not endpoint:
        app.logger.info("otel_disabled_no_endpoint")
        return
    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.flask import FlaskInstrumentor
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        from tryon.extensions import db

        provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)
        FlaskInstrumentor().instrument_app(app)
        with app.app_context():
            SQLAlchemyInstrumentor().instrument(engine=db.engine)
        app.logger.info("otel_enabled endpoint=%s", endpoint)
    except Exception as e:
        app.logger.warning("otel_init_failed err=%s", e)


def install_request_observers(app) -> None:
    """Assign every request an id, echo it back, and write one JSON access line."""

    @app.before_request
    def _begin_request():
        rid = (request.headers.get(REQUEST_ID_HEADER) or "").strip()[:80]
        g.request_id = rid or uuid.uuid4().hex
        g.request_started_at = time.perf_counter()

    @app.after_request
    def _end_request(response):
        rid = getattr(g, "request_id", "") or uuid.uuid4().hex
        response.headers[REQUEST_ID_HEADER] = rid

        started = getattr(g, "request_started_at", None)
        entry = {
            "ts": datetime.utcnow().isoformat(),
            "request_id": rid,
            "method": request.method,
            "path": request.path,
            "endpoint": request.endpoint or "",
            "status": int(response.status_code),
            "latency_ms": round((time.perf_counter() - started) * 1000.0, 2) if started is not None else None,
            "user_id": getattr(g, "auth_user_id", None),
            "role": getattr(g, "auth_role", None),
            "idempotency_key": bool(request.headers.get("Idempotency-Key")),
            "client": _client_fingerprint(str(app.config.get("SECRET_KEY") or SERVICE_NAME)),
        }
        for name in _LOGGED_VIEW_ARGS:
            if request.view_args and name in request.view_args:
                entry[name] = request.view_args[name]
        access_logger.info(json.dumps(entry))
        return response
