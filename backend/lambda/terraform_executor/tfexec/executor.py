"""tfexec.executor: Per-job pipeline and Terraform subprocess supervision.

One job, strictly in order:
    fetch primary source -> assume role -> backend.tf -> plugin cache ->
    module resolution -> environment -> git credentials ->
    terraform init -> terraform apply

Every failure is raised with the job name attached; nothing here touches
another job's state.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlsplit

from tfexec.backend import write_backend
from tfexec.config import ExecutorConfig
from tfexec.credentials import CredentialBroker, session_name_for
from tfexec.environment import build_environment, write_git_credentials
from tfexec.errors import ConfigurationError, CredentialError, ExecutorError, FetchError, ToolError
from tfexec.models import ExecutionRequest, JobResult, ModuleDescriptor, WorkingTree
from tfexec.modules import ModuleResolver
from tfexec.multiplexer import OutputMultiplexer
from tfexec.serialization import emit_structured_observability
from tfexec.source import SourceFetcher

__all__ = [
    "INIT_ARGS",
    "APPLY_ARGS",
    "JobExecutor",
]

INIT_ARGS = ("init", "-input=false")
APPLY_ARGS = ("apply", "-input=false", "-auto-approve")


class JobExecutor:
    def __init__(
        self,
        config: ExecutorConfig,
        fetcher: SourceFetcher,
        broker: CredentialBroker,
        multiplexer: OutputMultiplexer,
        resolver: Optional[ModuleResolver] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config
        self._fetcher = fetcher
        self._broker = broker
        self._mux = multiplexer
        self._logger = logger or logging.getLogger(__name__)
        self._resolver = resolver or ModuleResolver(fetcher, logger=self._logger)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def execute(self, request: ExecutionRequest) -> JobResult:
        """Run the job and report the outcome instead of raising."""
        started = time.monotonic()
        emit_structured_observability(
            component="job_executor", event="job_started", job=request.name, logger=self._logger
        )
        try:
            self.run(request)
        except Exception as exc:
            elapsed = int((time.monotonic() - started) * 1000)
            self._logger.error(
                "[ERROR] Job %s failed: %s", request.name, exc, exc_info=not isinstance(exc, ExecutorError)
            )
            emit_structured_observability(
                component="job_executor",
                event="job_failed",
                job=request.name,
                latency_ms=elapsed,
                error_code=type(exc).__name__,
                logger=self._logger,
            )
            return JobResult(name=request.name, succeeded=False, error=str(exc), duration_ms=elapsed)

        elapsed = int((time.monotonic() - started) * 1000)
        emit_structured_observability(
            component="job_executor", event="job_succeeded", job=request.name, latency_ms=elapsed, logger=self._logger
        )
        return JobResult(name=request.name, succeeded=True, duration_ms=elapsed)

    def run(self, request: ExecutionRequest) -> None:
        name = request.name
        if not request.account_id:
            raise ConfigurationError(f"job {name}: request has no account id")

        tree = self.prepare_tree(request)

        try:
            self._fetcher.fetch(self._config.repo_url, tree.root, request.source_version or None)
        except FetchError as exc:
            raise FetchError(f"job {name}: {exc}") from exc

        try:
            base = self._broker.base_credentials()
            scoped = self._broker.assume_role(session_name_for(name), self._config.role_arn(request.account_id))
        except CredentialError as exc:
            raise CredentialError(f"job {name}: {exc}") from exc

        try:
            write_backend(
                tree.backend_file,
                self._config.bucket,
                name,
                self._config.region,
                base if self._config.embed_backend_credentials else None,
            )
            tree.plugin_cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExecutorError(f"job {name}: failed to prepare {tree.root}: {exc}") from exc

        try:
            modules = self._resolver.resolve(tree)
        except ExecutorError as exc:
            raise type(exc)(f"job {name}: {exc}") from exc

        try:
            env = build_environment(request, tree, scoped, self._config.region)
        except ConfigurationError as exc:
            raise ConfigurationError(f"job {name}: {exc}") from exc

        try:
            write_git_credentials(tree.home, self._config.git_token, self._git_hosts(modules))
        except OSError as exc:
            raise ExecutorError(f"job {name}: failed to write git credentials in {tree.home}: {exc}") from exc

        self.run_tool(name, INIT_ARGS, tree.root, env)
        self.run_tool(name, APPLY_ARGS, tree.root, env)
        self._logger.info("[END] Job %s applied", name)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def prepare_tree(self, request: ExecutionRequest) -> WorkingTree:
        root = Path(self._config.work_root) / request.name
        if root.exists():
            try:
                shutil.rmtree(root)
            except OSError as exc:
                # A clone into a directory that is still there fails loudly.
                self._logger.warning("[WARNING] Job %s: failed to remove stale %s: %s", request.name, root, exc)
        self._logger.info("[START] Job %s in %s", request.name, root)
        return WorkingTree(root=root, entry_name=self._config.entry_file)

    def _git_hosts(self, modules: Sequence[ModuleDescriptor]) -> List[str]:
        hosts = [urlsplit(self._config.repo_url).netloc.rpartition("@")[2]]
        hosts.extend(urlsplit(m.normalized_address).netloc for m in modules if not m.local)
        return hosts

    def run_tool(self, name: str, args: Sequence[str], cwd: Path, env: Dict[str, str]) -> None:
        step = args[0]
        cmd = [self._config.terraform_bin, *args]
        self._logger.info("[TOOL] Job %s: %s", name, " ".join(cmd))
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(cwd),
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            raise ToolError(step, f"job {name}: failed to start terraform {step}: {exc}") from exc

        with proc:
            drained = self._mux.drain(name, proc)
            code = proc.wait()
        for error in drained.read_errors:
            self._logger.error("[ERROR] Job %s: terraform %s output broke: %s", name, step, error)
        if code != 0:
            raise ToolError(step, f"job {name}: terraform {step} exited with status {code}", exit_code=code)
