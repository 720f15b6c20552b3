from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

crm_audit_entries_total = Counter(
    "crm_audit_entries_total",
    "Total audit entries recorded by entity type and action",
    ["entity_type", "action"],
)

crm_undo_total = Counter(
    "crm_undo_total",
    "Total undo attempts by entity type and outcome",
    ["entity_type", "outcome"],
)

crm_stage_transitions_total = Counter(
    "crm_stage_transitions_total",
    "Total opportunity stage transitions",
    ["from_stage", "to_stage"],
)

crm_display_ids_allocated_total = Counter(
    "crm_display_ids_allocated_total",
    "Total display ids allocated by prefix",
    ["prefix"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_HEX_ID_RE = re.compile(r"/[0-9a-f]{32}\b")
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    without_hex_ids = _HEX_ID_RE.sub("/{id}", without_uuids)
    return _INT_RE.sub("/{id}", without_hex_ids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_audit_entry(entity_type: str, action: str) -> None:
    crm_audit_entries_total.labels(entity_type=entity_type, action=action).inc()


def observe_undo(entity_type: str, outcome: str) -> None:
    crm_undo_total.labels(entity_type=entity_type, outcome=outcome).inc()


def observe_stage_transition(from_stage: str, to_stage: str) -> None:
    crm_stage_transitions_total.labels(from_stage=from_stage, to_stage=to_stage).inc()


def observe_display_id_allocated(prefix: str) -> None:
    crm_display_ids_allocated_total.labels(prefix=prefix).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
