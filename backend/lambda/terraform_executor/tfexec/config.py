"""tfexec.config: Environment configuration, capacity detection and logging.

Environment variables:
    REGION                     default: us-east-1
    BUCKET                     S3 bucket holding Terraform state
    REPO_URL                   primary repository cloned for every job
    GIT_TOKEN                  default: "" (anonymous clone)
    ROLE_NAME                  default: TerraformExecutor
    ROLE_PARTITION             default: aws
    WORK_ROOT                  default: /tmp
    ENTRY_FILE                 default: main.tf
    TERRAFORM_BIN              default: terraform
    EMBED_BACKEND_CREDENTIALS  default: false
    OUTPUT_TIMESTAMPS          default: true
    MAX_CONCURRENT_JOBS        default: 0 (one job per usable CPU)
    FUNCTION_NAME              default: $AWS_LAMBDA_FUNCTION_NAME
    LOG_LEVEL                  default: INFO
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from tfexec.errors import ConfigurationError

__all__ = [
    "DEFAULT_REGION",
    "DEFAULT_ROLE_NAME",
    "ExecutorConfig",
    "configure_logging",
    "logger",
    "usable_cpus",
]

DEFAULT_REGION = "us-east-1"
DEFAULT_ROLE_NAME = "TerraformExecutor"

_TRUTHY = {"1", "true", "yes", "on"}

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Apply LOG_LEVEL to the root logger and return it.

    The Lambda runtime installs its own handler on the root logger, so only
    the level is adjusted here; a stream handler is added when none exists
    (local runs).
    """
    name = (level or os.environ.get("LOG_LEVEL") or "INFO").strip().upper()
    logger.setLevel(getattr(logging, name, logging.INFO))
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        logger.addHandler(handler)
    return logger


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------


def usable_cpus() -> int:
    """Number of CPUs this process may run on (never less than 1)."""
    try:
        count = len(os.sched_getaffinity(0))
    except (AttributeError, OSError):
        count = os.cpu_count() or 1
    return max(1, count)


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutorConfig:
    repo_url: str
    bucket: str = ""
    region: str = DEFAULT_REGION
    git_token: str = ""
    role_name: str = DEFAULT_ROLE_NAME
    role_partition: str = "aws"
    work_root: str = "/tmp"
    entry_file: str = "main.tf"
    terraform_bin: str = "terraform"
    embed_backend_credentials: bool = False
    output_timestamps: bool = True
    max_concurrent_jobs: int = 0
    function_name: str = ""

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ExecutorConfig":
        env = os.environ if env is None else env
        repo_url = (env.get("REPO_URL") or "").strip()
        if not repo_url:
            raise ConfigurationError("REPO_URL is required")
        max_jobs = _int(env, "MAX_CONCURRENT_JOBS", 0)
        if max_jobs < 0:
            raise ConfigurationError(f"MAX_CONCURRENT_JOBS must be >= 0, got {max_jobs}")
        return cls(
            repo_url=repo_url,
            bucket=(env.get("BUCKET") or "").strip(),
            region=(env.get("REGION") or DEFAULT_REGION).strip(),
            git_token=env.get("GIT_TOKEN") or "",
            role_name=(env.get("ROLE_NAME") or DEFAULT_ROLE_NAME).strip(),
            role_partition=(env.get("ROLE_PARTITION") or "aws").strip(),
            work_root=(env.get("WORK_ROOT") or "/tmp").strip(),
            entry_file=(env.get("ENTRY_FILE") or "main.tf").strip(),
            terraform_bin=(env.get("TERRAFORM_BIN") or "terraform").strip(),
            embed_backend_credentials=_flag(env, "EMBED_BACKEND_CREDENTIALS", False),
            output_timestamps=_flag(env, "OUTPUT_TIMESTAMPS", True),
            max_concurrent_jobs=max_jobs,
            function_name=(env.get("FUNCTION_NAME") or env.get("AWS_LAMBDA_FUNCTION_NAME") or "").strip(),
        )

    @property
    def capacity(self) -> int:
        if self.max_concurrent_jobs > 0:
            return self.max_concurrent_jobs
        return usable_cpus()

    def role_arn(self, account_id: str) -> str:
        return f"arn:{self.role_partition}:iam::{account_id}:role/{self.role_name}"
