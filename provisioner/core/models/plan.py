"""
Plan models — the declarative document and the ordered plan.

``PlanDocument`` is what a user writes (provision.yml). ``Plan`` is what
the graph builder produces from it: the same steps, topologically
ordered, ready for the reconciliation loop.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from provisioner.core.models.step import Step


class PlanDocument(BaseModel):
    """A plan as declared on disk.

    Steps are kept in declaration order; no ordering or reference
    checks happen here (see ``engine.graph.build_plan``).
    """

    version: int = 1
    name: str = ""
    description: str = ""
    settings: dict[str, Any] = Field(default_factory=dict)
    steps: list[Step] = Field(default_factory=list)


@dataclass(frozen=True)
class Plan:
    """Steps in an order where every prerequisite precedes its dependents."""

    steps: tuple[Step, ...] = ()
    name: str = ""
    _index: dict[str, Step] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_index", {s.id: s for s in self.steps})

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._index

    @property
    def ids(self) -> list[str]:
        return [s.id for s in self.steps]

    def get(self, step_id: str) -> Step | None:
        return self._index.get(step_id)

    def dependents(self, step_id: str) -> list[Step]:
        """Steps that list ``step_id`` as a direct prerequisite."""
        return [s for s in self.steps if step_id in s.prerequisites]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "total": len(self.steps),
            "steps": [s.summary() for s in self.steps],
        }
