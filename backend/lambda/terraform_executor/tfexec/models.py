"""tfexec.models: Requests, module descriptors, credentials and job outcomes."""

from __future__ import annotations

import datetime as dt
import enum
import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from tfexec.errors import ConfigurationError

__all__ = [
    "BatchResult",
    "ExecutionRequest",
    "JobResult",
    "ModuleDescriptor",
    "ScopedCredential",
    "VariableKind",
    "VariableValue",
    "WorkingTree",
    "parse_batch",
    "parse_record",
]

_UNSAFE_NAME = re.compile(r"[/\\\x00]")

# ---------------------------------------------------------------------------
# Request variables
# ---------------------------------------------------------------------------


class VariableKind(enum.Enum):
    BOOL = "bool"
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    OBJECT = "object"


@dataclass(frozen=True)
class VariableValue:
    """One request variable, tagged with how it must be rendered."""

    kind: VariableKind
    value: Any

    @classmethod
    def from_raw(cls, name: str, raw: Any) -> "VariableValue":
        # bool is a subclass of int, so it has to be tested first.
        if isinstance(raw, bool):
            return cls(VariableKind.BOOL, raw)
        if isinstance(raw, str):
            return cls(VariableKind.STRING, raw)
        if isinstance(raw, int):
            return cls(VariableKind.INTEGER, raw)
        if isinstance(raw, float):
            return cls(VariableKind.FLOAT, raw)
        if isinstance(raw, dict):
            return cls(VariableKind.OBJECT, raw)
        raise ConfigurationError(
            f"variable {name!r} has unsupported type {type(raw).__name__}"
        )

    def render(self) -> str:
        if self.kind is VariableKind.BOOL:
            return "true" if self.value else "false"
        if self.kind is VariableKind.STRING:
            return self.value
        if self.kind is VariableKind.INTEGER:
            return str(self.value)
        if self.kind is VariableKind.FLOAT:
            return f"{self.value:f}"
        return json.dumps(self.value, sort_keys=True, separators=(",", ":"), default=str)


# ---------------------------------------------------------------------------
# Execution requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutionRequest:
    account_id: str
    name: str
    source_version: str = ""
    log_verbosity: str = ""
    variables: Dict[str, Any] = field(default_factory=dict)
    # Wire record as received; overflow is forwarded from it unchanged.
    raw: Any = field(default=None, compare=False, repr=False)
    # Set when the record failed validation; such a request never runs.
    problem: str = field(default="", compare=False)

    @classmethod
    def from_dict(cls, record: Any) -> "ExecutionRequest":
        if not isinstance(record, dict):
            raise ConfigurationError(f"request must be an object, got {type(record).__name__}")
        name = str(record.get("name") or "").strip()
        if not name:
            raise ConfigurationError("request is missing 'name'")
        if name in (".", "..") or _UNSAFE_NAME.search(name):
            raise ConfigurationError(f"request name {name!r} is not a valid directory name")
        variables = record.get("variables") or {}
        if not isinstance(variables, dict):
            raise ConfigurationError(f"request {name!r}: 'variables' must be an object")
        return cls(
            account_id=str(record.get("id") or "").strip(),
            name=name,
            source_version=str(record.get("version") or "").strip(),
            log_verbosity=str(record.get("log_level") or "").strip(),
            variables=dict(variables),
            raw=record,
        )

    @classmethod
    def rejected(cls, record: Any, index: int, problem: str) -> "ExecutionRequest":
        """A placeholder for a record that failed validation.

        It is labelled with the record's name when there is one, otherwise
        with its position in the batch.
        """
        label = ""
        if isinstance(record, dict) and isinstance(record.get("name"), str):
            label = record["name"].strip()
        return cls(account_id="", name=label or f"request[{index}]", raw=record, problem=problem)

    @property
    def valid(self) -> bool:
        return not self.problem

    def to_dict(self) -> Any:
        if self.raw is not None:
            return self.raw
        return {
            "id": self.account_id,
            "name": self.name,
            "version": self.source_version,
            "log_level": self.log_verbosity,
            "variables": dict(self.variables),
        }

    def typed_variables(self) -> Dict[str, VariableValue]:
        return {k: VariableValue.from_raw(k, v) for k, v in self.variables.items()}


def parse_record(record: Any, index: int) -> ExecutionRequest:
    try:
        return ExecutionRequest.from_dict(record)
    except ConfigurationError as exc:
        return ExecutionRequest.rejected(record, index, str(exc))


def parse_batch(payload: Any) -> List[ExecutionRequest]:
    """Decode a Lambda event into requests.

    Accepts a JSON array of request objects, a string holding one, or an
    object with a ``requests`` array. Only a payload that is not an array
    raises; a bad record becomes a rejected request that fails on its own.
    """
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload) if payload.strip() else []
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"failed to decode requests: {exc}") from exc
    if isinstance(payload, dict) and "requests" in payload:
        payload = payload["requests"]
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise ConfigurationError(f"requests must be a list, got {type(payload).__name__}")
    return [parse_record(record, i) for i, record in enumerate(payload)]


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScopedCredential:
    access_key_id: str
    secret_access_key: str
    session_token: str = ""
    expiration: Optional[dt.datetime] = None

    def as_environment(self) -> Dict[str, str]:
        return {
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key,
            "AWS_SESSION_TOKEN": self.session_token,
        }

    def __repr__(self) -> str:
        return f"ScopedCredential(access_key_id={self.access_key_id!r}, expiration={self.expiration!r})"


# ---------------------------------------------------------------------------
# Working tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkingTree:
    root: Path
    entry_name: str = "main.tf"

    @property
    def home(self) -> Path:
        return self.root

    @property
    def entry_file(self) -> Path:
        return self.root / self.entry_name

    @property
    def backend_file(self) -> Path:
        return self.root / "backend.tf"

    @property
    def data_dir(self) -> Path:
        return self.root / ".terraform"

    @property
    def modules_root(self) -> Path:
        return self.data_dir / "modules"

    @property
    def manifest_file(self) -> Path:
        return self.modules_root / "modules.json"

    @property
    def plugin_cache_dir(self) -> Path:
        return self.root / ".terraform.d" / "plugin-cache"


# ---------------------------------------------------------------------------
# Modules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModuleDescriptor:
    key: str
    source_address: str
    normalized_address: str
    checkout_path: Path
    root_checkout_path: Path
    revision: Optional[str] = None
    local: bool = False

    def to_manifest_entry(self, workdir: Path) -> Dict[str, str]:
        return {
            "Key": self.key,
            "Source": self.source_address,
            "Dir": os.path.relpath(self.checkout_path, workdir),
        }


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass
class JobResult:
    name: str
    succeeded: bool
    error: str = ""
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "succeeded": self.succeeded,
            "duration_ms": self.duration_ms,
        }
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class BatchResult:
    jobs: List[JobResult] = field(default_factory=list)
    dispatched: int = 0

    @property
    def failed(self) -> List[JobResult]:
        return [job for job in self.jobs if not job.succeeded]

    @property
    def succeeded(self) -> List[JobResult]:
        return [job for job in self.jobs if job.succeeded]

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "ok" if self.ok else "partial_failure",
            "dispatched": self.dispatched,
            "succeeded": [job.name for job in self.succeeded],
            "failed": [{"name": job.name, "error": job.error} for job in self.failed],
            "jobs": [job.to_dict() for job in self.jobs],
        }
