"""
Retry policy — which step failures get another attempt, and when.

Delays grow quadratically with the attempt number (1s, 4s, 9s with the
default base), optionally with jitter. Retry eligibility:

    StepDefinitionError   never (the plan is wrong, retrying won't help)
    StepCancelledError    never
    ProbeError            always (db locked, transient query failure)
    timeouts              always
    ApplyError            only for transient steps (network-backed installs)
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass

from provisioner.core.errors import (
    ApplyError,
    ProvisionError,
    StepCancelledError,
    StepDefinitionError,
)
from provisioner.core.models.step import Step

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries with quadratic backoff.

    Args:
        max_retries: Extra attempts after the first (total = max_retries + 1).
        backoff_base: Delay unit in seconds; attempt n waits ``base * n²``.
        max_delay: Cap on a single delay.
        jitter: Fraction of the delay added at random (0 = deterministic).
    """

    max_retries: int = 2
    backoff_base: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def is_retryable(self, step: Step, error: BaseException) -> bool:
        """Whether ``error`` on ``step`` may be retried at all."""
        if isinstance(error, (StepDefinitionError, StepCancelledError)):
            return False
        if isinstance(error, ProvisionError) and error.retryable:
            return True
        if isinstance(error, ApplyError):
            return step.transient
        return False

    def should_retry(self, step: Step, error: BaseException, attempt: int) -> bool:
        """Whether to make another attempt after ``attempt`` (1-based) failed."""
        if attempt >= self.max_attempts:
            logger.warning("Step '%s' exhausted after %d attempts", step.id, attempt)
            return False
        return self.is_retryable(step, error)

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt ``attempt`` (1-based)."""
        delay = min(self.backoff_base * attempt * attempt, self.max_delay)
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return delay
