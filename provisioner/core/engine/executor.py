"""
Executor — apply a step that a probe found unsatisfied.

Flow for one apply:

    apply → exit 0  → re-probe → converged?  → Applied
                                 no          → ApplyError("did not converge")
          → exit ≠0 → re-probe → converged?  → Applied (someone else got there)
                                 no          → ApplyError(captured output)
          → timeout →                          ApplyTimeoutError

Nothing is reported Applied unless a probe confirms it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from provisioner.adapters.base import ExecutionContext
from provisioner.adapters.registry import AdapterRegistry
from provisioner.core.config.settings import RunSettings
from provisioner.core.engine.probe import ProbeEngine
from provisioner.core.errors import (
    ApplyError,
    ApplyTimeoutError,
    ProbeError,
    ProvisionError,
)
from provisioner.core.models.probe import ProbeResult, ProbeStatus
from provisioner.core.models.step import Step

logger = logging.getLogger(__name__)


@dataclass
class ApplyOutcome:
    """What happened when a step was applied."""

    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    raced: bool = False             # apply failed but the state converged anyway
    requires_relogin: bool = False
    verified: ProbeResult | None = None


class Executor:
    """Runs adapters' apply actions and verifies them."""

    def __init__(
        self,
        registry: AdapterRegistry,
        settings: RunSettings | None = None,
        probe_engine: ProbeEngine | None = None,
    ):
        self.registry = registry
        self.settings = settings or RunSettings()
        self.probe_engine = probe_engine or ProbeEngine(registry, self.settings)

    def apply(self, step: Step, probe_result: ProbeResult) -> ApplyOutcome:
        """Apply ``step`` after a negative probe.

        Args:
            step: Step to apply.
            probe_result: The unsatisfied probe that justifies applying.

        Raises:
            ValueError: ``probe_result`` is not a negative probe.
            ApplyError / ApplyTimeoutError: The apply failed.
            ProbeError: The verification probe could not run.
        """
        if probe_result.status != ProbeStatus.UNSATISFIED:
            raise ValueError(f"Refusing to apply '{step.id}': probe is {probe_result.status}")

        adapter = self.registry.for_step(step)
        ctx = ExecutionContext(
            step=step,
            timeout=step.apply_timeout or self.settings.apply_timeout,
            kill_grace=self.settings.kill_grace,
            probe_result=probe_result,
        )

        logger.info("Applying %s (%s)", step.id, step.label)
        try:
            result = adapter.apply(ctx)
        except ProvisionError:
            raise
        except OSError as e:
            raise ApplyError(step.id, f"Apply failed: {e}") from e

        if result.timed_out:
            raise ApplyTimeoutError(
                step.id,
                f"Apply timed out after {ctx.timeout}s",
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        if not result.ok:
            # Another process may have satisfied the step while we ran.
            try:
                recheck = self.probe_engine.probe(step)
            except ProbeError as e:
                logger.debug("Re-probe after failed apply of %s failed: %s", step.id, e)
                recheck = None
            if recheck is not None and recheck.converged:
                logger.info("Apply of %s failed but state converged; accepting", step.id)
                return ApplyOutcome(
                    returncode=result.returncode,
                    stdout=result.stdout,
                    stderr=result.stderr,
                    elapsed_ms=result.elapsed_ms,
                    raced=True,
                    requires_relogin=recheck.status == ProbeStatus.REQUIRES_RELOGIN,
                    verified=recheck,
                )
            raise ApplyError(
                step.id,
                f"Command failed (exit {result.returncode})",
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        verified = self.probe_engine.probe(step)
        if not verified.converged:
            raise ApplyError(
                step.id,
                f"Apply succeeded but state did not converge: {verified.detail}",
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        return ApplyOutcome(
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            elapsed_ms=result.elapsed_ms,
            requires_relogin=verified.status == ProbeStatus.REQUIRES_RELOGIN,
            verified=verified,
        )
