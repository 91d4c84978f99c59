"""
Service adapter — ensure a service is running and/or enabled at boot.

Supports systemd and OpenRC. The init system is detected once per
process; probes are read-only status queries.
"""

from __future__ import annotations

import functools
import logging
import shutil
from pathlib import Path

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.adapters.shell.runner import CommandResult, run_command
from provisioner.core.errors import ProbeError
from provisioner.core.models.probe import ProbeResult
from provisioner.core.models.step import Classification

logger = logging.getLogger(__name__)

# `systemctl is-enabled` answers that count as "starts at boot"
_ENABLED_STATES = {"enabled", "enabled-runtime", "static", "alias", "indirect", "generated"}


@functools.cache
def detect_init_system() -> str:
    """Detect the init system (systemd, openrc, or unknown)."""
    if Path("/run/systemd/system").exists():
        return "systemd"
    if shutil.which("rc-service"):
        return "openrc"
    return "unknown"


class ServiceAdapter(Adapter):
    """Start and enable system services.

    Probe spec:
        name (str): Service/unit name, e.g. ``apache2``.
        active (bool): Must be running (default: True).
        enabled (bool): Must start at boot (default: False).
    Apply spec:
        command (str | list): Optional override.
    """

    @property
    def classification(self) -> Classification:
        return Classification.SERVICE

    def is_available(self) -> bool:
        return detect_init_system() != "unknown"

    def validate(self, ctx: ExecutionContext) -> tuple[bool, str]:
        spec = ctx.step.probe
        if not spec.get("name"):
            return False, "Missing required probe param: 'name'"
        if not spec.get("active", True) and not spec.get("enabled", False):
            return False, "Service step must require 'active' or 'enabled'"
        return True, ""

    def probe(self, ctx: ExecutionContext) -> ProbeResult:
        spec = ctx.step.probe
        name = spec["name"]
        want_active = spec.get("active", True)
        want_enabled = spec.get("enabled", False)

        init = detect_init_system()
        if init == "systemd":
            active, enabled = self._systemd_state(ctx, name, want_enabled)
        elif init == "openrc":
            active, enabled = self._openrc_state(ctx, name, want_enabled)
        else:
            raise ProbeError(ctx.step.id, "No supported init system detected")

        needs_start = want_active and not active
        needs_enable = want_enabled and not enabled
        if not needs_start and not needs_enable:
            return ProbeResult.satisfied(f"{name} is in desired state", init=init)

        missing = [w for w, needed in (("start", needs_start), ("enable", needs_enable)) if needed]
        return ProbeResult.unsatisfied(
            f"{name} needs {' and '.join(missing)}",
            init=init, start=needs_start, enable=needs_enable,
        )

    def _systemd_state(self, ctx: ExecutionContext, name: str, check_enabled: bool) -> tuple[bool, bool]:
        r = self.query(ctx, ["systemctl", "is-active", name])
        if r.returncode == 127:
            raise ProbeError(ctx.step.id, "systemctl not found")
        active = r.stdout.strip() == "active"

        enabled = False
        if check_enabled:
            r = self.query(ctx, ["systemctl", "is-enabled", name])
            enabled = r.stdout.strip() in _ENABLED_STATES
        return active, enabled

    def _openrc_state(self, ctx: ExecutionContext, name: str, check_enabled: bool) -> tuple[bool, bool]:
        r = self.query(ctx, ["rc-service", name, "status"])
        active = r.returncode == 0 and "started" in r.stdout

        enabled = False
        if check_enabled:
            r = self.query(ctx, ["rc-update", "show", "default"])
            enabled = any(line.split("|")[0].strip() == name for line in r.stdout.splitlines())
        return active, enabled

    def apply(self, ctx: ExecutionContext) -> CommandResult:
        override = self.override_command(ctx)
        if override is not None:
            return override

        name = ctx.step.probe["name"]
        data = ctx.probe_result.data if ctx.probe_result else {}
        start = data.get("start", ctx.step.probe.get("active", True))
        enable = data.get("enable", ctx.step.probe.get("enabled", False))

        commands = _service_commands(data.get("init") or detect_init_system(), name, start, enable)
        result = CommandResult(command=[], returncode=0)
        outputs: list[str] = []
        for cmd in commands:
            result = run_command(cmd, sudo=True, timeout=ctx.timeout, kill_grace=ctx.kill_grace)
            outputs.append(result.stdout)
            if not result.ok:
                break
        result.stdout = "".join(outputs)
        return result


def _service_commands(init: str, name: str, start: bool, enable: bool) -> list[list[str]]:
    if init == "systemd":
        if start and enable:
            return [["systemctl", "enable", "--now", name]]
        if enable:
            return [["systemctl", "enable", name]]
        return [["systemctl", "start", name]]
    if init == "openrc":
        cmds: list[list[str]] = []
        if enable:
            cmds.append(["rc-update", "add", name, "default"])
        if start:
            cmds.append(["rc-service", name, "start"])
        return cmds
    return [["service", name, "start"]]
