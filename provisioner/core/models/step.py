"""
Step model — one declared unit of desired system state.

A Step says *what* should be true (package installed, service active,
file present with given content...). *How* to check and enforce it is
the job of the adapter registered for the step's classification; the
step only carries the parameters (``probe`` and ``apply`` specs).

Steps are created once at plan-load time and are immutable for the
duration of a run.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

# Token held by every package step — the OS package database allows a
# single writer, and most package managers also lock it for queries.
PACKAGE_DB_TOKEN = "package-db"


class Classification(StrEnum):
    """What kind of system state a step manages."""

    PACKAGE = "package"
    SERVICE = "service"
    FILE = "file"
    COMMAND = "command"
    GROUP = "group"


class Step(BaseModel):
    """A single provisioning step.

    Accepts the declarative record shape::

        {id, label, classification, prerequisites[], probe, apply}

    ``type``/``requires`` and ``probe_spec``/``apply_spec`` are accepted
    as aliases so hand-written plans stay forgiving.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    label: str = ""
    classification: Classification = Field(
        validation_alias=AliasChoices("classification", "type"),
    )
    prerequisites: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("prerequisites", "requires", "depends_on"),
    )
    probe: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("probe", "probe_spec"),
    )
    apply: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("apply", "apply_spec"),
    )

    # ── Scheduling ───────────────────────────────────────────────
    resource: str | None = None        # explicit mutual-exclusion token
    transient: bool = False            # failures may be retried
    probe_timeout: float | None = Field(default=None, gt=0)
    apply_timeout: float | None = Field(default=None, gt=0)
    sudo: bool = False

    # Every step must be safe to re-run. Not configurable.
    idempotent: Literal[True] = True

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("label") and data.get("id"):
            data["label"] = data["id"]
        # Package installs fetch from the network; treat them as transient
        # unless the plan says otherwise.
        kind = data.get("classification", data.get("type"))
        if "transient" not in data and kind == Classification.PACKAGE.value:
            data["transient"] = True
        return data

    @field_validator("id")
    @classmethod
    def _strip_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("step id must not be blank")
        if "," in value:
            raise ValueError("step id must not contain ','")
        return value

    @field_validator("prerequisites", mode="before")
    @classmethod
    def _normalize_prerequisites(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        # Dedupe, keep declared order.
        seen: dict[str, None] = {}
        for item in value:
            seen.setdefault(str(item).strip(), None)
        return tuple(seen)

    @property
    def tokens(self) -> tuple[str, ...]:
        """Resource tokens this step must hold, sorted.

        Package steps always hold ``package-db``; an explicit ``resource``
        is held in addition to it.
        """
        names = set()
        if self.classification == Classification.PACKAGE:
            names.add(PACKAGE_DB_TOKEN)
        if self.resource:
            names.add(self.resource)
        return tuple(sorted(names))

    @property
    def token(self) -> str | None:
        """Name of the resource token this step must hold, if any."""
        if self.resource:
            return self.resource
        if self.classification == Classification.PACKAGE:
            return PACKAGE_DB_TOKEN
        return None

    def summary(self) -> dict[str, Any]:
        """Compact description for plan listings."""
        return {
            "id": self.id,
            "label": self.label,
            "classification": self.classification.value,
            "prerequisites": list(self.prerequisites),
            "tokens": list(self.tokens),
            "transient": self.transient,
        }
