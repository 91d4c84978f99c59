"""
File adapter — ensure a file exists with exact content.

The content is given inline or copied from a source file. State is
compared by sha256 of the bytes, plus the permission bits
when the plan asks for a mode. Writes are atomic (temp file in the same
directory, then rename), so a crash never leaves a half-written target.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import time
from pathlib import Path

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.adapters.shell.runner import CommandResult, run_command
from provisioner.core.errors import ProbeError, StepDefinitionError, StepError
from provisioner.core.models.probe import ProbeResult
from provisioner.core.models.step import Classification

logger = logging.getLogger(__name__)


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def parse_mode(value: str | int | None) -> int | None:
    """Accept ``0644``, ``"0644"``, ``"644"`` or ``420`` (decimal int)."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(str(value), 8)


class FileAdapter(Adapter):
    """Write files with given content.

    Probe spec:
        path (str): Target path (``~`` expanded).
        content (str): Expected content.
        source (str): Or, a file whose bytes the target must match. Read
            at probe time; relative paths are anchored to the plan file.
        mode (str | int): Optional permission bits, e.g. ``"0644"``.
    Apply spec:
        makedirs (bool): Create parent directories (default: True).
        command (str | list): Optional override for the write.
    """

    @property
    def classification(self) -> Classification:
        return Classification.FILE

    def validate(self, ctx: ExecutionContext) -> tuple[bool, str]:
        spec = ctx.step.probe
        if not spec.get("path"):
            return False, "Missing required probe param: 'path'"
        if ("content" in spec) == ("source" in spec):
            return False, "Exactly one of 'content' or 'source' is required"
        if "content" in spec and not isinstance(spec["content"], str):
            return False, "'content' must be a string"
        if "source" in spec and not (isinstance(spec["source"], str) and spec["source"]):
            return False, "'source' must be a non-empty path"
        try:
            parse_mode(spec.get("mode"))
        except ValueError:
            return False, f"Invalid mode: {spec.get('mode')!r}"
        return True, ""

    def _target(self, ctx: ExecutionContext) -> Path:
        return Path(os.path.expanduser(ctx.step.probe["path"]))

    def _source(self, ctx: ExecutionContext) -> Path | None:
        source = ctx.step.probe.get("source")
        return Path(os.path.expanduser(source)) if source else None

    def _desired(self, ctx: ExecutionContext) -> bytes:
        """The bytes the target must hold.

        Raises:
            StepDefinitionError: ``source`` does not exist.
            ProbeError: ``source`` exists but cannot be read.
        """
        source = self._source(ctx)
        if source is None:
            return ctx.step.probe["content"].encode("utf-8")
        if not source.is_file():
            raise StepDefinitionError(ctx.step.id, f"Source file not found: {source}")
        try:
            return source.read_bytes()
        except OSError as e:
            raise ProbeError(ctx.step.id, f"Cannot read source {source}: {e}") from e

    def probe(self, ctx: ExecutionContext) -> ProbeResult:
        target = self._target(ctx)
        expected = sha256_bytes(self._desired(ctx))
        mode = parse_mode(ctx.step.probe.get("mode"))

        if target.is_dir():
            raise StepDefinitionError(ctx.step.id, f"{target} is a directory")
        if not target.exists():
            return ProbeResult.unsatisfied(f"{target} does not exist", exists=False)

        try:
            actual = sha256_file(target)
            current_mode = target.stat().st_mode & 0o7777
        except OSError as e:
            raise ProbeError(ctx.step.id, f"Cannot read {target}: {e}") from e

        if actual != expected:
            return ProbeResult.unsatisfied(
                f"{target} content differs", exists=True, sha256=actual,
            )
        if mode is not None and current_mode != mode:
            return ProbeResult.unsatisfied(
                f"{target} mode is {current_mode:04o}, want {mode:04o}",
                exists=True, content_ok=True,
            )
        return ProbeResult.satisfied(f"{target} up to date", sha256=actual)

    def apply(self, ctx: ExecutionContext) -> CommandResult:
        override = self.override_command(ctx)
        if override is not None:
            return override

        target = self._target(ctx)
        mode = parse_mode(ctx.step.probe.get("mode"))

        if ctx.step.sudo and os.geteuid() != 0:
            return self._apply_with_sudo(ctx, target, mode)

        start = time.monotonic()
        try:
            data = self._desired(ctx)
            if ctx.step.apply.get("makedirs", True):
                target.parent.mkdir(parents=True, exist_ok=True)
            self._atomic_write(target, data, mode)
        except (OSError, StepError) as e:
            return CommandResult(
                command=["write", str(target)],
                returncode=1,
                stderr=f"Cannot write {target}: {e}",
            )
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug("Wrote %s (%d bytes)", target, len(data))
        return CommandResult(
            command=["write", str(target)],
            returncode=0,
            stdout=f"wrote {target}",
            elapsed_ms=elapsed_ms,
        )

    @staticmethod
    def _atomic_write(target: Path, data: bytes, mode: int | None) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            if mode is not None:
                tmp.chmod(mode)
            elif target.exists():
                tmp.chmod(target.stat().st_mode & 0o7777)
            else:
                tmp.chmod(0o644)
            tmp.replace(target)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

    def _apply_with_sudo(self, ctx: ExecutionContext, target: Path, mode: int | None) -> CommandResult:
        # tee (or cp for a source file) handles the privileged write.
        if ctx.step.apply.get("makedirs", True):
            made = run_command(
                ["mkdir", "-p", str(target.parent)],
                sudo=True,
                timeout=ctx.timeout,
                kill_grace=ctx.kill_grace,
            )
            if not made.ok:
                return made

        source = self._source(ctx)
        if source is not None:
            result = run_command(
                ["cp", "--", str(source), str(target)],
                sudo=True,
                timeout=ctx.timeout,
                kill_grace=ctx.kill_grace,
            )
        else:
            result = run_command(
                ["tee", str(target)],
                sudo=True,
                timeout=ctx.timeout,
                kill_grace=ctx.kill_grace,
                input_text=ctx.step.probe["content"],
            )
            result.stdout = ""  # tee echoes the content back
        if not result.ok or mode is None:
            return result
        return run_command(
            ["chmod", f"{mode:04o}", str(target)],
            sudo=True,
            timeout=ctx.timeout,
            kill_grace=ctx.kill_grace,
        )
