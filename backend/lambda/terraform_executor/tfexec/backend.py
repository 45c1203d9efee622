"""tfexec.backend: Per-job S3 remote-state configuration."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from tfexec.models import ScopedCredential

__all__ = [
    "render_backend",
    "state_key",
    "write_backend",
]


def state_key(job_name: str) -> str:
    return f"{job_name}.tfstate"


def _hcl_string(value: str) -> str:
    # JSON string escaping is a valid HCL quoted string.
    return json.dumps(value)


def render_backend(
    bucket: str,
    job_name: str,
    region: str,
    credentials: Optional[ScopedCredential] = None,
) -> str:
    """Render the terraform backend block.

    When ``credentials`` is given they are embedded so the state bucket is
    reached with the executor's own identity instead of the assumed role.
    """
    attrs = [
        ("bucket", bucket),
        ("key", state_key(job_name)),
        ("region", region),
    ]
    if credentials is not None:
        attrs.append(("access_key", credentials.access_key_id))
        attrs.append(("secret_key", credentials.secret_access_key))
        if credentials.session_token:
            attrs.append(("token", credentials.session_token))

    width = max(len(name) for name, _ in attrs)
    body = "\n".join(f"    {name.ljust(width)} = {_hcl_string(value)}" for name, value in attrs)
    return f'terraform {{\n  backend "s3" {{\n{body}\n  }}\n}}\n'


def write_backend(
    path: Path,
    bucket: str,
    job_name: str,
    region: str,
    credentials: Optional[ScopedCredential] = None,
) -> Path:
    content = render_backend(bucket, job_name, region, credentials)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(content)
    return path
