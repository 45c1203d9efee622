"""tfexec.errors: Exception hierarchy shared by every executor component."""

from __future__ import annotations

from typing import Optional


class ExecutorError(Exception):
    """Base class for failures raised by the executor."""


class ConfigurationError(ExecutorError):
    """Malformed input, entry file or environment configuration. Never retried."""


class NotFoundError(ConfigurationError):
    """An expected declaration (module block, entry file) is missing."""


class DuplicateModuleError(ConfigurationError):
    """Two module blocks in one entry file share a name."""


class FetchError(ExecutorError):
    """git clone/checkout failed."""


class CredentialError(ExecutorError):
    """Base credentials were unavailable or AssumeRole failed."""


class ToolError(ExecutorError):
    """Terraform could not be started or exited non-zero."""

    def __init__(self, step: str, message: str, exit_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.step = step
        self.exit_code = exit_code


class FanOutError(ExecutorError):
    """Overflow requests could not be handed to a new invocation."""
