"""
Adapter base — the protocol contract between engine and the host.

Each classification (package, service, file, command, group) has one
adapter that knows how to *probe* the current state and how to *apply*
the desired state. The engine only talks to adapters through this
protocol, never directly to package managers or init systems.

Contract:
    probe()  → ProbeResult. Read-only; safe to call repeatedly.
               Raises ProbeError / ProbeTimeoutError when the state
               cannot be determined.
    apply()  → CommandResult. Never raises for a failing action;
               the executor inspects the result.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from provisioner.adapters.shell.runner import CommandResult, run_command
from provisioner.core.errors import ProbeTimeoutError
from provisioner.core.models.probe import ProbeResult
from provisioner.core.models.step import Classification, Step


class ExecutionContext(BaseModel):
    """Everything an adapter needs for one probe or apply call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    step: Step
    timeout: float = 30.0
    kill_grace: float = 5.0
    dry_run: bool = False
    probe_result: ProbeResult | None = None   # set for apply calls
    params: dict[str, Any] = Field(default_factory=dict)


class Adapter(ABC):
    """Abstract base class for all classification adapters.

    To create a new adapter:
        1. Subclass Adapter
        2. Implement classification, validate, probe, apply
        3. Register it in the AdapterRegistry
    """

    @property
    @abstractmethod
    def classification(self) -> Classification:
        """The classification this adapter handles."""

    @property
    def name(self) -> str:
        return str(self.classification)

    def is_available(self) -> bool:
        """Check if the underlying tool exists on this host. Never raises."""
        return True

    @abstractmethod
    def validate(self, ctx: ExecutionContext) -> tuple[bool, str]:
        """Check the step's probe/apply specs are well-formed.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def probe(self, ctx: ExecutionContext) -> ProbeResult:
        """Report whether the step's desired state already holds."""

    @abstractmethod
    def apply(self, ctx: ExecutionContext) -> CommandResult:
        """Perform the step's action. Only called after a negative probe."""

    # ── Shared helpers ───────────────────────────────────────────

    def query(self, ctx: ExecutionContext, command: str | list[str], **kwargs: Any) -> CommandResult:
        """Run a read-only command for a probe.

        Raises:
            ProbeTimeoutError: The query exceeded the probe timeout.
        """
        result = run_command(command, timeout=ctx.timeout, kill_grace=ctx.kill_grace, **kwargs)
        if result.timed_out:
            raise ProbeTimeoutError(
                ctx.step.id,
                f"Probe timed out after {ctx.timeout}s: {' '.join(result.command)}",
            )
        return result

    def override_command(self, ctx: ExecutionContext) -> CommandResult | None:
        """Run ``apply.command`` if the plan gives one explicitly."""
        command = ctx.step.apply.get("command")
        if not command:
            return None
        cwd = ctx.step.apply.get("cwd")
        return run_command(
            command,
            timeout=ctx.timeout,
            kill_grace=ctx.kill_grace,
            sudo=ctx.step.sudo,
            env_overrides=ctx.step.apply.get("env"),
            cwd=os.path.expanduser(cwd) if cwd else None,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} classification={self.name!r}>"
