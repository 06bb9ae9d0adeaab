"""Monitoring plugin status vocabulary and process exit contract."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import IntEnum
from typing import NoReturn, TextIO


class Status(IntEnum):
    """Plugin status; the value is the process exit code."""

    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3


@dataclass(frozen=True)
class ProbeResult:
    """Final outcome of one probe run."""

    status: Status
    message: str

    @property
    def line(self) -> str:
        return f"{self.status.name} - {self.message}"


def terminate(result: ProbeResult, stream: TextIO | None = None) -> NoReturn:
    """Print the status line and exit with the matching code."""
    print(result.line, file=stream or sys.stdout, flush=True)
    sys.exit(int(result.status))
