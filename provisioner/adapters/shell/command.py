"""
Command adapter — user-supplied check and apply commands.

The most general classification: the plan author provides an
idempotent check and the action that makes it pass.
"""

from __future__ import annotations

import logging
import os

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.adapters.shell.runner import CommandResult
from provisioner.core.errors import ProbeError
from provisioner.core.models.probe import ProbeResult
from provisioner.core.models.step import Classification

logger = logging.getLogger(__name__)


class CommandAdapter(Adapter):
    """Run a check command; run the apply command when it fails.

    Probe spec:
        command (str | list): Check command. Exit 0 means satisfied.
        cwd (str), env (dict): Optional.
    Apply spec:
        command (str | list): Action to run when the check fails.
        cwd (str), env (dict): Optional.
    """

    @property
    def classification(self) -> Classification:
        return Classification.COMMAND

    def is_available(self) -> bool:
        return os.path.exists("/bin/sh")

    def validate(self, ctx: ExecutionContext) -> tuple[bool, str]:
        if not ctx.step.probe.get("command"):
            return False, "Missing required probe param: 'command'"
        if not ctx.step.apply.get("command"):
            return False, "Missing required apply param: 'command'"
        for spec in (ctx.step.probe, ctx.step.apply):
            cwd = spec.get("cwd")
            if cwd and not os.path.isdir(os.path.expanduser(cwd)):
                return False, f"Working directory does not exist: {cwd}"
        return True, ""

    def probe(self, ctx: ExecutionContext) -> ProbeResult:
        spec = ctx.step.probe
        cwd = spec.get("cwd")
        result = self.query(
            ctx,
            spec["command"],
            sudo=ctx.step.sudo,
            env_overrides=spec.get("env"),
            cwd=os.path.expanduser(cwd) if cwd else None,
        )
        if result.returncode == 0:
            return ProbeResult.satisfied("check passed")
        if ctx.step.sudo and "password is required" in result.stderr:
            raise ProbeError(ctx.step.id, "sudo needs a password; refresh credentials with 'sudo -v'")
        if result.returncode in (126, 127) and not result.stdout:
            logger.debug("Check for '%s' could not run: %s", ctx.step.id, result.stderr.strip())
        return ProbeResult.unsatisfied(f"check exited {result.returncode}")

    def apply(self, ctx: ExecutionContext) -> CommandResult:
        result = self.override_command(ctx)
        assert result is not None  # validate() requires apply.command
        return result
