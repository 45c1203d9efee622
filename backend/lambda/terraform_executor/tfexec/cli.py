"""Run a request batch on this machine.

Overflow that would be handed to a new Lambda invocation is queued in
process and run as successive batches instead.

    python -m tfexec.cli requests.json
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from typing import List, Optional

from tfexec.app import App
from tfexec.config import ExecutorConfig, configure_logging
from tfexec.dispatcher import QueueFanOut
from tfexec.errors import ExecutorError
from tfexec.models import BatchResult, parse_batch


def run_local(app: App, queue: QueueFanOut, requests) -> List[BatchResult]:
    results = []
    dispatcher = app.dispatcher()
    batch = list(requests)
    while batch:
        results.append(dispatcher.run(batch))
        batch = queue.pop() or []
    return results


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("batch", help="JSON file with a list of requests ('-' for stdin)")
    parser.add_argument("--max-jobs", type=int, default=0, help="override MAX_CONCURRENT_JOBS")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    logger = configure_logging(args.log_level)
    try:
        if args.batch == "-":
            raw = sys.stdin.read()
        else:
            with open(args.batch, encoding="utf-8") as fh:
                raw = fh.read()
        requests = parse_batch(raw)
        config = ExecutorConfig.from_env()
    except (OSError, ExecutorError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2

    if args.max_jobs > 0:
        config = dataclasses.replace(config, max_concurrent_jobs=args.max_jobs)

    queue = QueueFanOut()
    app = App(config, fan_out=queue, logger=logger)
    results = run_local(app, queue, requests)

    failed = [job.to_dict() for result in results for job in result.failed]
    print(json.dumps({
        "batches": len(results),
        "succeeded": sum(len(r.succeeded) for r in results),
        "failed": failed,
    }, indent=2))
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
