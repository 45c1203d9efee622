"""tfexec.app: Wires configuration and collaborators into a ready dispatcher."""

from __future__ import annotations

import logging
from typing import Any, Optional, TextIO

from tfexec.config import ExecutorConfig
from tfexec.credentials import CredentialBroker
from tfexec.dispatcher import Dispatcher, FanOut, LambdaFanOut
from tfexec.executor import JobExecutor
from tfexec.models import BatchResult, parse_batch
from tfexec.multiplexer import OutputMultiplexer
from tfexec.source import GitFetcher, SourceFetcher

__all__ = ["App"]


class App:
    def __init__(
        self,
        config: ExecutorConfig,
        fan_out: Optional[FanOut] = None,
        fetcher: Optional[SourceFetcher] = None,
        broker: Optional[CredentialBroker] = None,
        sink: Optional[TextIO] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.logger = logger or logging.getLogger("tfexec")
        self._fan_out = fan_out
        self.executor = JobExecutor(
            config,
            fetcher or GitFetcher(token=config.git_token, logger=self.logger),
            broker or CredentialBroker(region=config.region, logger=self.logger),
            OutputMultiplexer(sink=sink, timestamps=config.output_timestamps, logger=self.logger),
            logger=self.logger,
        )

    def dispatcher(self, context: Any = None) -> Dispatcher:
        fan_out = self._fan_out
        if fan_out is None:
            function_name = self.config.function_name or getattr(context, "function_name", "")
            fan_out = LambdaFanOut(function_name, region=self.config.region, logger=self.logger)
        return Dispatcher(self.executor.execute, fan_out, self.config.capacity, logger=self.logger)

    def run(self, event: Any, context: Any = None) -> BatchResult:
        requests = parse_batch(event)
        if not requests:
            return BatchResult()
        return self.dispatcher(context).run(requests)
