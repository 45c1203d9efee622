"""tfexec.serialization: Wire encoding, timestamps and structured observability lines."""

from __future__ import annotations

import datetime as dt
import json
import logging
from typing import Any, Dict, Iterable, Optional

from tfexec.models import ExecutionRequest

__all__ = [
    "_now_z",
    "emit_structured_observability",
    "serialize_batch",
]

_log = logging.getLogger(__name__)


def _now_z() -> str:
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def serialize_batch(requests: Iterable[ExecutionRequest]) -> bytes:
    """Encode requests in the same array format the handler accepts."""
    return json.dumps([req.to_dict() for req in requests], default=str).encode("utf-8")


def emit_structured_observability(
    *,
    component: str,
    event: str,
    job: Optional[str] = None,
    latency_ms: Optional[int] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    payload: Dict[str, Any] = {
        "timestamp": _now_z(),
        "component": component,
        "event": event,
        "job": str(job or ""),
        "latency_ms": int(max(0, latency_ms or 0)),
        "error_code": str(error_code or ""),
    }
    if extra:
        payload.update(extra)
    (logger or _log).info("[OBSERVABILITY] %s", json.dumps(payload, sort_keys=True, default=str))
