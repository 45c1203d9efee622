"""tfexec.credentials: Base credentials and STS role assumption for target accounts."""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from tfexec.aws_clients import _get_session, _get_sts
from tfexec.errors import CredentialError
from tfexec.models import ScopedCredential

__all__ = [
    "CredentialBroker",
    "session_name_for",
]

_SESSION_NAME_INVALID = re.compile(r"[^\w+=,.@-]")
_SESSION_NAME_MAX = 64


def session_name_for(job_name: str, prefix: str = "tfexec") -> str:
    """RoleSessionName for a job: allowed characters only, at most 64 long."""
    cleaned = _SESSION_NAME_INVALID.sub("-", f"{prefix}-{job_name}")
    return cleaned[:_SESSION_NAME_MAX]


class CredentialBroker:
    """Exchanges account ids for short-lived credentials.

    The process's own credentials are only read, never mutated, so one broker
    is shared by every job in the invocation.

    Base credentials are resolved once per broker under a lock, since the
    boto3 session is not safe to use from several job threads at once.
    """

    def __init__(
        self,
        region: Optional[str] = None,
        sts_client: Any = None,
        session: Any = None,
        duration_seconds: int = 3600,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._region = region
        self._sts = sts_client
        self._session = session
        self._duration_seconds = duration_seconds
        self._logger = logger or logging.getLogger(__name__)
        self._base: Optional[ScopedCredential] = None
        self._base_lock = threading.Lock()

    def base_credentials(self) -> ScopedCredential:
        with self._base_lock:
            if self._base is None:
                self._base = self._resolve_base()
            return self._base

    def _resolve_base(self) -> ScopedCredential:
        session = self._session or _get_session(self._region)
        try:
            creds = session.get_credentials()
        except BotoCoreError as exc:
            raise CredentialError(f"failed to load base credentials: {exc}") from exc
        if creds is None:
            raise CredentialError("no base credentials available to this process")
        frozen = creds.get_frozen_credentials()
        return ScopedCredential(
            access_key_id=frozen.access_key,
            secret_access_key=frozen.secret_key,
            session_token=frozen.token or "",
        )

    def assume_role(self, session_name: str, role_arn: str) -> ScopedCredential:
        sts = self._sts or _get_sts(self._region)
        try:
            resp = sts.assume_role(
                RoleArn=role_arn,
                RoleSessionName=session_name,
                DurationSeconds=self._duration_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise CredentialError(f"failed to assume role {role_arn}: {exc}") from exc

        creds = resp.get("Credentials") or {}
        if not creds.get("AccessKeyId") or not creds.get("SecretAccessKey"):
            raise CredentialError(f"AssumeRole for {role_arn} returned no credentials")
        self._logger.info("[CREDENTIALS] Assumed %s as %s", role_arn, session_name)
        return ScopedCredential(
            access_key_id=creds["AccessKeyId"],
            secret_access_key=creds["SecretAccessKey"],
            session_token=creds.get("SessionToken", ""),
            expiration=creds.get("Expiration"),
        )
