"""tfexec.dispatcher: Capacity split, overflow fan-out and concurrent local jobs.

Given N requests and capacity C the dispatcher runs ``requests[:C]`` in this
process and hands ``requests[C:]`` to a new invocation of the same function.
The new invocation applies the same rule, so an arbitrarily large batch is
consumed by a chain of invocations.
"""

from __future__ import annotations

import collections
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Deque, List, Optional, Protocol, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from tfexec.aws_clients import _get_lambda
from tfexec.errors import ConfigurationError, FanOutError
from tfexec.models import BatchResult, ExecutionRequest, JobResult, parse_batch
from tfexec.serialization import emit_structured_observability, serialize_batch

__all__ = [
    "Dispatcher",
    "FanOut",
    "LambdaFanOut",
    "QueueFanOut",
    "split_batch",
]

_ASYNC_ACCEPTED = 202


class FanOut(Protocol):
    def dispatch(self, payload: bytes) -> None:
        """Start a new invocation with ``payload``; must not wait for it to finish."""
        ...


def split_batch(requests: Sequence[ExecutionRequest], capacity: int):
    """Return ``(local, overflow)``; ``overflow`` is empty when len <= capacity."""
    if capacity < 1:
        raise ValueError(f"capacity must be at least 1, got {capacity}")
    cut = min(len(requests), capacity)
    return list(requests[:cut]), list(requests[cut:])


# ---------------------------------------------------------------------------
# Fan-out transports
# ---------------------------------------------------------------------------


class LambdaFanOut:
    """Asynchronously invokes this Lambda function with the overflow payload."""

    def __init__(
        self,
        function_name: str,
        client: Any = None,
        region: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not function_name:
            raise ConfigurationError("fan-out needs a function name (FUNCTION_NAME or AWS_LAMBDA_FUNCTION_NAME)")
        self._function_name = function_name
        self._client = client
        self._region = region
        self._logger = logger or logging.getLogger(__name__)

    @property
    def function_name(self) -> str:
        return self._function_name

    def dispatch(self, payload: bytes) -> None:
        client = self._client or _get_lambda(self._region)
        try:
            resp = client.invoke(
                FunctionName=self._function_name,
                InvocationType="Event",
                Payload=payload,
            )
        except (BotoCoreError, ClientError) as exc:
            raise FanOutError(f"failed to invoke {self._function_name}: {exc}") from exc

        status = int(resp.get("StatusCode") or 0)
        if status != _ASYNC_ACCEPTED or resp.get("FunctionError"):
            raise FanOutError(
                f"invocation of {self._function_name} was not accepted "
                f"(status={status}, error={resp.get('FunctionError') or ''})"
            )
        self._logger.info("[FANOUT] Handed %d bytes to %s", len(payload), self._function_name)


class QueueFanOut:
    """In-process FIFO of pending payloads for local runs."""

    def __init__(self) -> None:
        self._pending: Deque[bytes] = collections.deque()

    def dispatch(self, payload: bytes) -> None:
        self._pending.append(payload)

    def pop(self) -> Optional[List[ExecutionRequest]]:
        if not self._pending:
            return None
        return parse_batch(self._pending.popleft())

    def __len__(self) -> int:
        return len(self._pending)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class Dispatcher:
    def __init__(
        self,
        run_job: Callable[[ExecutionRequest], JobResult],
        fan_out: FanOut,
        capacity: int,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self._run_job = run_job
        self._fan_out = fan_out
        self._capacity = capacity
        self._logger = logger or logging.getLogger(__name__)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def fan_out(self) -> FanOut:
        return self._fan_out

    def run(self, requests: Sequence[ExecutionRequest]) -> BatchResult:
        if not requests:
            self._logger.info("[START] Empty batch, nothing to do")
            return BatchResult()

        local, overflow = split_batch(requests, self._capacity)
        self._logger.info(
            "[START] %d request(s): %d local, %d overflow (capacity %d)",
            len(requests), len(local), len(overflow), self._capacity,
        )

        if overflow:
            self._hand_off(overflow)

        result = BatchResult(dispatched=len(overflow))
        result.jobs = self._run_local(local)
        self._logger.info(
            "[END] Batch finished: %d succeeded, %d failed, %d dispatched",
            len(result.succeeded), len(result.failed), result.dispatched,
        )
        return result

    def _hand_off(self, overflow: List[ExecutionRequest]) -> None:
        try:
            payload = serialize_batch(overflow)
        except (TypeError, ValueError) as exc:
            raise FanOutError(f"failed to serialize {len(overflow)} overflow request(s): {exc}") from exc
        self._fan_out.dispatch(payload)
        emit_structured_observability(
            component="dispatcher",
            event="fan_out",
            extra={"requests": [r.name for r in overflow]},
            logger=self._logger,
        )

    def _run_local(self, local: List[ExecutionRequest]) -> List[JobResult]:
        outcomes: List[Optional[JobResult]] = [None] * len(local)
        runnable = []
        for i, req in enumerate(local):
            if req.valid:
                runnable.append(i)
                continue
            self._logger.error("[ERROR] Job %s rejected: %s", req.name, req.problem)
            outcomes[i] = JobResult(name=req.name, succeeded=False, error=req.problem)
        if not runnable:
            return [o for o in outcomes if o is not None]

        with ThreadPoolExecutor(max_workers=len(runnable), thread_name_prefix="job") as pool:
            futures = {pool.submit(self._run_job, local[i]): i for i in runnable}
            for future in as_completed(futures):
                i = futures[future]
                try:
                    outcomes[i] = future.result()
                except Exception as exc:
                    self._logger.error("[ERROR] Job %s raised: %s", local[i].name, exc, exc_info=True)
                    outcomes[i] = JobResult(name=local[i].name, succeeded=False, error=str(exc))
        return [o for o in outcomes if o is not None]
