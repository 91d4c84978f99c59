"""
Run settings — tunables for the reconciliation loop.

Resolved in precedence order:
    CLI option  >  plan ``settings:`` block  >  PROVISION_* env var  >  default

None of these values are contracts; they are defaults a plan author or
operator is expected to adjust.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from provisioner.core.errors import PlanLoadError

logger = logging.getLogger(__name__)

ENV_PREFIX = "PROVISION_"


class RunSettings(BaseModel):
    """Tunables for one run."""

    model_config = ConfigDict(extra="forbid")

    concurrency: int = Field(default=4, ge=1)
    max_retries: int = Field(default=2, ge=0)        # 3 attempts total
    backoff_base: float = Field(default=1.0, ge=0)   # delays 1s, 4s, 9s...
    probe_timeout: float = Field(default=30.0, gt=0)
    apply_timeout: float = Field(default=900.0, gt=0)
    kill_grace: float = Field(default=5.0, ge=0)     # SIGTERM → SIGKILL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
        """Collect PROVISION_* overrides from the environment.

        Returns raw values; validation happens in ``resolve_settings``.
        """
        environ = os.environ if environ is None else environ
        found: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw not in (None, ""):
                found[name] = raw
        return found


def resolve_settings(
    plan_settings: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> RunSettings:
    """Merge settings sources into a validated RunSettings.

    Args:
        plan_settings: ``settings:`` block from the plan document.
        overrides: Values given on the command line. ``None`` entries
            are ignored so unset options fall through.
        environ: Environment mapping (default: ``os.environ``).

    Raises:
        PlanLoadError: A source holds an unknown key or invalid value.
    """
    merged: dict[str, Any] = {}
    merged.update(RunSettings.from_env(environ))
    merged.update(plan_settings or {})
    merged.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        settings = RunSettings.model_validate(merged)
    except ValidationError as e:
        raise PlanLoadError(f"Invalid settings: {e}") from e

    logger.debug("Run settings: %s", settings.model_dump())
    return settings
