"""tfexec.environment: Subprocess environment for one Terraform job."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from tfexec.models import ExecutionRequest, ScopedCredential, WorkingTree

__all__ = [
    "build_environment",
    "render_variables",
    "to_env_list",
    "write_git_credentials",
]

# Host variables carried into the job so the tool and git stay resolvable.
_PASSTHROUGH = ("PATH", "LANG", "LC_ALL", "TZ", "SSL_CERT_FILE", "SSL_CERT_DIR")


def render_variables(request: ExecutionRequest) -> Dict[str, str]:
    """Render request variables as environment values.

    Raises ConfigurationError for values outside bool/string/int/float/object.
    """
    return {name: value.render() for name, value in request.typed_variables().items()}


def build_environment(
    request: ExecutionRequest,
    tree: WorkingTree,
    credential: ScopedCredential,
    region: str,
    host_env: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Assemble the complete environment for the Terraform subprocess.

    Later entries win: request variables cannot override credentials, cache
    locations or HOME.
    """
    host_env = os.environ if host_env is None else host_env
    env: Dict[str, str] = {k: host_env[k] for k in _PASSTHROUGH if host_env.get(k)}
    env.update(render_variables(request))
    env.update(credential.as_environment())
    env.update(
        {
            "AWS_REGION": region,
            "AWS_DEFAULT_REGION": region,
            "TF_PLUGIN_CACHE_DIR": str(tree.plugin_cache_dir),
            "TF_DATA_DIR": str(tree.data_dir),
            "TF_IN_AUTOMATION": "1",
            "TF_INPUT": "0",
            "GIT_TERMINAL_PROMPT": "0",
            "HOME": str(tree.home),
        }
    )
    if request.log_verbosity:
        env["TF_LOG"] = request.log_verbosity
    return env


def to_env_list(env: Mapping[str, str]) -> List[str]:
    return [f"{k}={v}" for k, v in env.items()]


def write_git_credentials(home: Path, token: str, hosts: Iterable[str]) -> Optional[Path]:
    """Write a credential-store helper config into ``home``.

    Git run by Terraform (lazy module fetches) reads ``$HOME/.gitconfig`` and
    authenticates against every listed host with the token. Returns the
    credentials file, or None when there is no token.
    """
    if not token:
        return None
    unique = sorted({h for h in hosts if h})
    if not unique:
        return None

    credentials = home / ".git-credentials"
    fd = os.open(credentials, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        for host in unique:
            fh.write(f"https://git:{token}@{host}\n")

    gitconfig = home / ".gitconfig"
    gitconfig.write_text(
        f"[credential]\n\thelper = store --file {credentials}\n",
        encoding="utf-8",
    )
    return credentials
