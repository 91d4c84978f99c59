"""
Probe engine — side-effect-free state checks.

Resolves the step's adapter, validates the step definition, and asks the
adapter whether the desired state already holds. Anything unexpected
from an adapter is folded into the error taxonomy so the loop only ever
sees ProvisionErrors.
"""

from __future__ import annotations

import logging

from provisioner.adapters.base import ExecutionContext
from provisioner.adapters.registry import AdapterRegistry
from provisioner.core.config.settings import RunSettings
from provisioner.core.errors import ProbeError, ProvisionError, StepDefinitionError
from provisioner.core.models.probe import ProbeResult
from provisioner.core.models.step import Step

logger = logging.getLogger(__name__)


class ProbeEngine:
    """Answers "is this step already done?" for any classification."""

    def __init__(self, registry: AdapterRegistry, settings: RunSettings | None = None):
        self.registry = registry
        self.settings = settings or RunSettings()

    def context(self, step: Step) -> ExecutionContext:
        return ExecutionContext(
            step=step,
            timeout=step.probe_timeout or self.settings.probe_timeout,
            kill_grace=self.settings.kill_grace,
        )

    def validate(self, step: Step) -> None:
        """Raise StepDefinitionError if the step's specs are malformed."""
        adapter = self.registry.for_step(step)
        ok, message = adapter.validate(self.context(step))
        if not ok:
            raise StepDefinitionError(step.id, f"Invalid {step.classification} step: {message}")

    def probe(self, step: Step) -> ProbeResult:
        """Probe ``step``.

        Raises:
            StepDefinitionError: The step is malformed (not retryable).
            ProbeError / ProbeTimeoutError: State could not be determined.
        """
        self.validate(step)
        adapter = self.registry.for_step(step)
        ctx = self.context(step)

        try:
            result = adapter.probe(ctx)
        except ProvisionError:
            raise
        except OSError as e:
            raise ProbeError(step.id, f"Probe failed: {e}") from e

        logger.debug("Probe %s → %s (%s)", step.id, result.status, result.detail)
        return result
