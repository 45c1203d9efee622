"""tfexec.aws_clients: Lazy-singleton AWS service clients.

Clients are created on first use and cached for the lifetime of the Lambda
container. boto3 clients are thread-safe, so jobs running on pool threads
share them; the session itself is only touched while holding a lock.
"""

from __future__ import annotations

import threading
from typing import Any, Optional

import boto3
from botocore.config import Config

from tfexec.config import DEFAULT_REGION

__all__ = [
    "_get_lambda",
    "_get_session",
    "_get_sts",
    "reset_clients",
]

# ---------------------------------------------------------------------------
# Client singletons
# ---------------------------------------------------------------------------

_session = None
_sts = None
_lambda = None
_lock = threading.Lock()


def _get_session(region: Optional[str] = None):
    """Get (or create) the boto3 session singleton."""
    global _session
    with _lock:
        if _session is None:
            _session = boto3.session.Session(region_name=region or DEFAULT_REGION)
        return _session


def _get_sts(region: Optional[str] = None):
    """Get (or create) the STS client singleton."""
    global _sts
    session = _get_session(region)
    with _lock:
        if _sts is None:
            _sts = session.client(
                "sts",
                region_name=region or session.region_name or DEFAULT_REGION,
                config=Config(retries={"max_attempts": 3, "mode": "standard"}),
            )
        return _sts


def _get_lambda(region: Optional[str] = None) -> Any:
    """Get (or create) the Lambda client singleton."""
    global _lambda
    session = _get_session(region)
    with _lock:
        if _lambda is None:
            _lambda = session.client(
                "lambda",
                region_name=region or session.region_name or DEFAULT_REGION,
                config=Config(retries={"max_attempts": 3, "mode": "standard"}),
            )
        return _lambda


def reset_clients() -> None:
    """Drop cached clients (tests and credential rotation)."""
    global _session, _sts, _lambda
    with _lock:
        _session = None
        _sts = None
        _lambda = None
