"""
Adapter registry — classification → adapter dispatch.

The registry is the single point of adapter management. The probe
engine and executor never pick adapters themselves; they ask the
registry for the one that handles a step's classification.
"""

from __future__ import annotations

import logging
from typing import Any

from provisioner.adapters.base import Adapter
from provisioner.core.errors import StepDefinitionError
from provisioner.core.models.step import Classification, Step

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Central registry of classification adapters.

    Features:
        - Register/unregister adapters by classification
        - Mock mode: one adapter serves every classification
        - Query adapter availability
    """

    def __init__(self, mock_adapter: Adapter | None = None):
        self._adapters: dict[Classification, Adapter] = {}
        self._mock_adapter = mock_adapter

    @property
    def mock_mode(self) -> bool:
        return self._mock_adapter is not None

    def register(self, adapter: Adapter) -> None:
        """Register an adapter for its classification."""
        kind = adapter.classification
        if kind in self._adapters:
            logger.warning("Overwriting existing adapter: %s", kind)
        self._adapters[kind] = adapter
        logger.debug("Registered adapter: %s", kind)

    def unregister(self, classification: Classification) -> None:
        self._adapters.pop(classification, None)

    def get(self, classification: Classification) -> Adapter | None:
        if self._mock_adapter is not None:
            return self._mock_adapter
        return self._adapters.get(classification)

    def for_step(self, step: Step) -> Adapter:
        """Adapter for ``step``.

        Raises:
            StepDefinitionError: No adapter handles the classification.
        """
        adapter = self.get(step.classification)
        if adapter is None:
            raise StepDefinitionError(
                step.id, f"No adapter registered for '{step.classification}'",
            )
        return adapter

    def list_adapters(self) -> list[str]:
        return [str(k) for k in self._adapters]

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Availability of all registered adapters."""
        status = {}
        for kind, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[str(kind)] = {
                "classification": str(kind),
                "available": available,
                "type": adapter.__class__.__name__,
            }
        return status


def default_registry() -> AdapterRegistry:
    """Registry with the built-in adapter for every classification."""
    from provisioner.adapters.shell.command import CommandAdapter
    from provisioner.adapters.shell.filesystem import FileAdapter
    from provisioner.adapters.system.groups import GroupAdapter
    from provisioner.adapters.system.packages import PackageAdapter
    from provisioner.adapters.system.services import ServiceAdapter

    registry = AdapterRegistry()
    for adapter in (
        PackageAdapter(),
        ServiceAdapter(),
        FileAdapter(),
        CommandAdapter(),
        GroupAdapter(),
    ):
        registry.register(adapter)
    return registry
