"""
Package adapter — ensure OS packages are installed.

Probes query the package database (dpkg-query, rpm, apk, pacman, brew,
snap); applies call the package manager's install command for just the
packages that are missing. Every package step holds the ``package-db``
token, so these never run concurrently with each other.
"""

from __future__ import annotations

import logging
import re
import shutil

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.adapters.shell.runner import CommandResult, run_command
from provisioner.core.errors import ProbeError
from provisioner.core.models.probe import ProbeResult
from provisioner.core.models.step import Classification

logger = logging.getLogger(__name__)

# Lookup order when the plan doesn't pin a manager.
_PM_BINARIES: tuple[tuple[str, str], ...] = (
    ("apt", "apt-get"),
    ("dnf", "dnf"),
    ("yum", "yum"),
    ("zypper", "zypper"),
    ("apk", "apk"),
    ("pacman", "pacman"),
    ("brew", "brew"),
)

PM_INSTALL_CMD: dict[str, list[str]] = {
    "apt":    ["apt-get", "install", "-y"],
    "dnf":    ["dnf", "install", "-y"],
    "yum":    ["yum", "install", "-y"],
    "zypper": ["zypper", "install", "-y"],
    "apk":    ["apk", "add"],
    "pacman": ["pacman", "-S", "--noconfirm"],
    "brew":   ["brew", "install"],
    "snap":   ["snap", "install"],
}

# Managers that must run as root.
_NEEDS_ROOT = {"apt", "dnf", "yum", "zypper", "apk", "pacman", "snap"}

# stderr fragments meaning "database busy", not "package missing".
_LOCK_MARKERS = ("could not get lock", "lock file", "database is locked", "unable to lock")

_CONSTRAINT_RE = re.compile(r"^\s*(>=|<=|==|!=|>|<|=)?\s*(\S+)\s*$")


def detect_package_manager() -> str | None:
    """Return the first package manager found on PATH."""
    for pm, binary in _PM_BINARIES:
        if shutil.which(binary):
            return pm
    return None


def parse_version(version: str) -> tuple[int, ...]:
    """Numeric prefix of a distro version string.

    ``1:2.34.1-1ubuntu1.10`` → ``(2, 34, 1)``; ``v1.2`` → ``(1, 2)``.
    Epoch and packaging revision are ignored.
    """
    text = version.strip().lstrip("v")
    if ":" in text:
        text = text.split(":", 1)[1]
    text = re.split(r"[-+~]", text, maxsplit=1)[0]
    parts: list[int] = []
    for piece in re.split(r"[._]", text):
        match = re.match(r"\d+", piece)
        if not match:
            break
        parts.append(int(match.group()))
        if match.end() != len(piece):
            break
    if not parts:
        raise ValueError(f"Unparseable version: {version!r}")
    return tuple(parts)


def version_satisfies(installed: str, constraint: str) -> bool:
    """Check an installed version against ``>=x.y`` style constraints.

    A bare version means ``>=``. Versions are compared on their numeric
    components, zero-padded to equal length.
    """
    match = _CONSTRAINT_RE.match(constraint)
    if not match:
        raise ValueError(f"Invalid version constraint: {constraint!r}")
    op = match.group(1) or ">="
    have = parse_version(installed)
    want = parse_version(match.group(2))
    width = max(len(have), len(want))
    have = have + (0,) * (width - len(have))
    want = want + (0,) * (width - len(want))

    if op in ("=", "=="):
        return have == want
    if op == "!=":
        return have != want
    if op == ">=":
        return have >= want
    if op == ">":
        return have > want
    if op == "<=":
        return have <= want
    return have < want


class PackageAdapter(Adapter):
    """Install a set of OS packages.

    Probe spec:
        packages (list[str]) | name (str): Package names.
        version (str): Optional constraint, e.g. ``">=2.30"`` (single-package steps).
        manager (str): apt, dnf, yum, zypper, apk, pacman, brew, snap
            (default: detected).
    Apply spec:
        options (list[str]): Extra install flags (e.g. ``["--classic"]`` for snap).
        command (str | list): Optional override for the install.
    """

    @property
    def classification(self) -> Classification:
        return Classification.PACKAGE

    def is_available(self) -> bool:
        return detect_package_manager() is not None

    # ── Spec helpers ─────────────────────────────────────────────

    @staticmethod
    def packages(ctx: ExecutionContext) -> list[str]:
        spec = ctx.step.probe
        names = spec.get("packages") or spec.get("name") or []
        if isinstance(names, str):
            names = names.split()
        return [str(n) for n in names]

    @staticmethod
    def manager(ctx: ExecutionContext) -> str | None:
        return ctx.step.probe.get("manager") or detect_package_manager()

    def validate(self, ctx: ExecutionContext) -> tuple[bool, str]:
        names = self.packages(ctx)
        if not names:
            return False, "Missing required probe param: 'packages' (or 'name')"
        pm = self.manager(ctx)
        if pm is None:
            return False, "No supported package manager found on this host"
        if pm not in PM_INSTALL_CMD:
            return False, f"Unknown package manager '{pm}'. Valid: {', '.join(sorted(PM_INSTALL_CMD))}"
        version = ctx.step.probe.get("version")
        if version:
            if len(names) != 1:
                return False, "'version' needs exactly one package"
            try:
                version_satisfies("0", str(version))
            except ValueError as e:
                return False, str(e)
        return True, ""

    # ── Probe ────────────────────────────────────────────────────

    def probe(self, ctx: ExecutionContext) -> ProbeResult:
        pm = self.manager(ctx)
        assert pm is not None  # checked by validate()
        constraint = ctx.step.probe.get("version")

        missing: list[str] = []
        outdated: list[str] = []
        for pkg in self.packages(ctx):
            installed_version = self._installed_version(ctx, pm, pkg)
            if installed_version is None:
                missing.append(pkg)
            elif constraint and installed_version:
                try:
                    ok = version_satisfies(installed_version, str(constraint))
                except ValueError:
                    logger.warning(
                        "Cannot compare %s version %r, accepting it", pkg, installed_version,
                    )
                    ok = True
                if not ok:
                    outdated.append(f"{pkg} {installed_version}")
                    missing.append(pkg)

        if not missing:
            return ProbeResult.satisfied("all packages installed", manager=pm)
        detail = f"missing: {', '.join(missing)}"
        if outdated:
            detail += f" (outdated: {', '.join(outdated)})"
        return ProbeResult.unsatisfied(detail, manager=pm, missing=missing)

    def _installed_version(self, ctx: ExecutionContext, pm: str, pkg: str) -> str | None:
        """Installed version of ``pkg``, ``""`` if installed but unknown, None if absent."""
        if pm == "apt":
            r = self._query(ctx, ["dpkg-query", "-W", "-f=${Status}\t${Version}", pkg])
            if r.returncode != 0:
                self._raise_if_locked(ctx, r)
                return None
            status, _, version = r.stdout.partition("\t")
            return version.strip() if "install ok installed" in status else None

        if pm in ("dnf", "yum", "zypper"):
            r = self._query(ctx, ["rpm", "-q", "--qf", "%{VERSION}", pkg])
            if r.returncode != 0:
                self._raise_if_locked(ctx, r)
                return None
            return r.stdout.strip()

        if pm == "apk":
            r = self._query(ctx, ["apk", "info", "-e", pkg])
            if r.returncode != 0:
                self._raise_if_locked(ctx, r)
                return None
            return ""

        if pm in ("pacman", "brew"):
            cmd = ["pacman", "-Q", pkg] if pm == "pacman" else ["brew", "ls", "--versions", pkg]
            r = self._query(ctx, cmd)
            if r.returncode != 0 or not r.stdout.strip():
                self._raise_if_locked(ctx, r)
                return None
            parts = r.stdout.split()
            return parts[1] if len(parts) > 1 else ""

        if pm == "snap":
            r = self._query(ctx, ["snap", "list", pkg])
            if r.returncode != 0:
                return None
            lines = r.stdout.strip().splitlines()
            if len(lines) < 2:
                return ""
            cols = lines[1].split()
            return cols[1] if len(cols) > 1 else ""

        raise ProbeError(ctx.step.id, f"No package query for manager '{pm}'")

    def _query(self, ctx: ExecutionContext, cmd: list[str]) -> CommandResult:
        r = self.query(ctx, cmd)
        if r.returncode == 127:
            # Checker binary not on PATH (e.g. dpkg-query on Fedora)
            raise ProbeError(ctx.step.id, f"Package checker not found: {cmd[0]}")
        return r

    @staticmethod
    def _raise_if_locked(ctx: ExecutionContext, r: CommandResult) -> None:
        stderr = r.stderr.lower()
        if any(marker in stderr for marker in _LOCK_MARKERS):
            raise ProbeError(ctx.step.id, f"Package database locked: {r.stderr.strip()}")

    # ── Apply ────────────────────────────────────────────────────

    def apply(self, ctx: ExecutionContext) -> CommandResult:
        override = self.override_command(ctx)
        if override is not None:
            return override

        pm = self.manager(ctx)
        assert pm is not None
        missing = self.packages(ctx)
        if ctx.probe_result is not None:
            missing = ctx.probe_result.data.get("missing", missing)

        cmd = build_install_cmd(missing, pm, ctx.step.apply.get("options"))
        env = {"DEBIAN_FRONTEND": "noninteractive"} if pm == "apt" else None
        logger.info("Installing %s via %s", ", ".join(missing), pm)
        return run_command(
            cmd,
            sudo=pm in _NEEDS_ROOT or ctx.step.sudo,
            timeout=ctx.timeout,
            kill_grace=ctx.kill_grace,
            env_overrides=env,
        )


def build_install_cmd(packages: list[str], pm: str, options: list[str] | None = None) -> list[str]:
    """Build a package-install command for a list of packages."""
    return PM_INSTALL_CMD[pm] + [str(o) for o in (options or [])] + list(packages)
