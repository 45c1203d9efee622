"""tfexec.multiplexer: Job-tagged line output for concurrently running subprocesses.

Every line read from a child pipe is written to the shared sink in a single
``write`` call while holding the sink lock, so lines from different jobs can
never be fused together.
"""

from __future__ import annotations

import datetime as dt
import logging
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from typing import IO, List, Optional, TextIO

__all__ = [
    "DrainResult",
    "OutputMultiplexer",
    "PumpResult",
]


@dataclass
class PumpResult:
    stream: str
    lines: int = 0
    read_error: Optional[str] = None
    write_errors: int = 0


@dataclass
class DrainResult:
    results: List[PumpResult] = field(default_factory=list)

    @property
    def read_errors(self) -> List[str]:
        return [f"{r.stream}: {r.read_error}" for r in self.results if r.read_error]


class OutputMultiplexer:
    def __init__(
        self,
        sink: Optional[TextIO] = None,
        timestamps: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._sink = sink if sink is not None else sys.stdout
        self._timestamps = timestamps
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger(__name__)

    def prefix(self, job: str) -> str:
        if self._timestamps:
            return f"[{dt.datetime.now().strftime('%H:%M:%S')}][{job}]: "
        return f"[{job}]: "

    def emit(self, job: str, line: str) -> bool:
        """Write one tagged line. Returns False if the sink rejected it."""
        text = self.prefix(job) + line.rstrip("\r\n") + "\n"
        with self._lock:
            try:
                self._sink.write(text)
                self._sink.flush()
            except (OSError, ValueError) as exc:
                self._logger.warning("[OUTPUT] %s: failed to write line: %s", job, exc)
                return False
        return True

    def pump(self, job: str, stream: IO[str], name: str = "stdout") -> PumpResult:
        """Copy ``stream`` line by line until EOF."""
        result = PumpResult(stream=name)
        try:
            for line in iter(stream.readline, ""):
                result.lines += 1
                if not self.emit(job, line):
                    result.write_errors += 1
        except (OSError, ValueError, UnicodeDecodeError) as exc:
            result.read_error = str(exc)
            self._logger.error("[OUTPUT] %s: failed reading %s: %s", job, name, exc)
        return result

    def drain(self, job: str, proc: subprocess.Popen) -> DrainResult:
        """Pump stdout and stderr of ``proc`` concurrently; returns once both hit EOF."""
        drained = DrainResult()
        threads = []
        for name, stream in (("stdout", proc.stdout), ("stderr", proc.stderr)):
            if stream is None:
                continue
            threads.append(threading.Thread(
                target=lambda s=stream, n=name: drained.results.append(self.pump(job, s, n)),
                name=f"{job}-{name}",
                daemon=True,
            ))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return drained
