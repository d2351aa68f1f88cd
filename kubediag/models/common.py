"""Types shared by several report families."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import assert_never


class Severity(StrEnum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def weight(self) -> int:
        match self:
            case Severity.CRITICAL:
                return 3
            case Severity.WARNING:
                return 2
            case Severity.INFO:
                return 1
            case _:
                assert_never(self)


@dataclass(frozen=True)
class EventInfo:
    """An event as shown in reports; ``source`` is ``component/host``."""

    type: str
    reason: str
    message: str
    count: int
    source: str
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None
