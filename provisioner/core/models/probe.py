"""
Probe result — the answer to "is this step already in its desired state?"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ProbeStatus(StrEnum):
    """Tri-state probe answer.

    REQUIRES_RELOGIN is for session-scoped state (group membership):
    the system is configured, but the current login session predates
    the change and must be restarted to observe it.
    """

    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"
    REQUIRES_RELOGIN = "requires_relogin"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe.

    ``data`` carries adapter-specific facts the apply step can use
    (e.g. which packages of a set are missing).
    """

    status: ProbeStatus
    detail: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        """Whether nothing needs to be applied for this step."""
        return self.status != ProbeStatus.UNSATISFIED

    @classmethod
    def satisfied(cls, detail: str = "", **data: Any) -> ProbeResult:
        return cls(ProbeStatus.SATISFIED, detail, data)

    @classmethod
    def unsatisfied(cls, detail: str = "", **data: Any) -> ProbeResult:
        return cls(ProbeStatus.UNSATISFIED, detail, data)

    @classmethod
    def requires_relogin(cls, detail: str = "", **data: Any) -> ProbeResult:
        return cls(ProbeStatus.REQUIRES_RELOGIN, detail, data)
