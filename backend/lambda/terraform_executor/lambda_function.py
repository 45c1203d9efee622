"""terraform_executor/lambda_function.py

Lambda that applies Terraform against a batch of AWS accounts.

Event (async invoke or direct):
    [
      {"id": "123456789012", "name": "acct-1", "version": "v1.0.0",
       "log_level": "INFO", "variables": {"enabled": true, "count": 3}},
      ...
    ]

The function runs one job per usable CPU and re-invokes itself
asynchronously with whatever does not fit. Each job clones REPO_URL at the
requested tag, assumes ROLE_NAME in the target account, writes an S3 backend
keyed <name>.tfstate, installs the modules referenced by the entry file and
runs `terraform init` followed by `terraform apply`.

Environment variables: see tfexec/config.py.
"""

from __future__ import annotations

import json
import os
import sys
from typing import Any, Dict

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from tfexec.app import App  # noqa: E402
from tfexec.config import ExecutorConfig, configure_logging  # noqa: E402

logger = configure_logging()

_app = None


def _get_app() -> App:
    global _app
    if _app is None:
        _app = App(ExecutorConfig.from_env(), logger=logger)
    return _app


def lambda_handler(event: Any, context: Any) -> Dict[str, Any]:
    request_id = getattr(context, "aws_request_id", "-")
    logger.info(f"[START] Terraform executor invocation {request_id}")
    result = _get_app().run(event, context)
    summary = result.to_dict()
    logger.info("[END] Terraform executor: %s", json.dumps(summary))
    return summary
