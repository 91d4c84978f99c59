"""
Group adapter — ensure a user is a member of a Unix group.

Group membership is session-scoped: ``usermod -aG docker $USER`` edits
the account database, but the current login session keeps its old
group list until the user logs in again. The probe therefore answers
in three states instead of two:

    satisfied         the process already carries the group
    requires_relogin  the account database lists the user, this session doesn't
    unsatisfied       the user is not a member at all
"""

from __future__ import annotations

import getpass
import grp
import logging
import os
import pwd

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.adapters.shell.runner import CommandResult, run_command
from provisioner.core.errors import ProbeError
from provisioner.core.models.probe import ProbeResult
from provisioner.core.models.step import Classification

logger = logging.getLogger(__name__)


def _current_user() -> str:
    # SUDO_USER: when run under sudo, the human is the one to provision.
    return os.environ.get("SUDO_USER") or getpass.getuser()


class GroupAdapter(Adapter):
    """Add a user to a group.

    Probe spec:
        group (str): Group name, e.g. ``docker``.
        user (str): Account (default: the invoking user).
    Apply spec:
        create (bool): Create the group first if missing (default: False).
        command (str | list): Optional override.
    """

    @property
    def classification(self) -> Classification:
        return Classification.GROUP

    def validate(self, ctx: ExecutionContext) -> tuple[bool, str]:
        if not ctx.step.probe.get("group"):
            return False, "Missing required probe param: 'group'"
        return True, ""

    def probe(self, ctx: ExecutionContext) -> ProbeResult:
        group = ctx.step.probe["group"]
        user = ctx.step.probe.get("user") or _current_user()

        try:
            entry = grp.getgrnam(group)
        except KeyError:
            return ProbeResult.unsatisfied(f"group '{group}' does not exist", exists=False)

        try:
            primary_gid = pwd.getpwnam(user).pw_gid
        except KeyError as e:
            raise ProbeError(ctx.step.id, f"Unknown user '{user}'") from e

        listed = user in entry.gr_mem or primary_gid == entry.gr_gid
        if not listed:
            return ProbeResult.unsatisfied(f"{user} is not in '{group}'", exists=True)

        # Session state only matters for the user running this process.
        if user != getpass.getuser() and user != os.environ.get("SUDO_USER"):
            return ProbeResult.satisfied(f"{user} is in '{group}'")
        if os.environ.get("SUDO_USER") and os.geteuid() == 0:
            # Under sudo our own group list is root's; can't see the user's session.
            return ProbeResult.satisfied(f"{user} is in '{group}'")
        if entry.gr_gid in os.getgroups():
            return ProbeResult.satisfied(f"{user} is in '{group}' (active in session)")
        return ProbeResult.requires_relogin(
            f"{user} was added to '{group}'; log out and back in to use it",
        )

    def apply(self, ctx: ExecutionContext) -> CommandResult:
        override = self.override_command(ctx)
        if override is not None:
            return override

        group = ctx.step.probe["group"]
        user = ctx.step.probe.get("user") or _current_user()
        exists = ctx.probe_result.data.get("exists", True) if ctx.probe_result else True

        if not exists and ctx.step.apply.get("create", False):
            created = run_command(["groupadd", group], sudo=True, timeout=ctx.timeout)
            if not created.ok:
                return created

        logger.info("Adding %s to group %s", user, group)
        return run_command(
            ["usermod", "-aG", group, user],
            sudo=True,
            timeout=ctx.timeout,
            kill_grace=ctx.kill_grace,
        )
