"""
Plan loader — reads provision.yml into domain models.

This is the primary entry point for loading a plan. It reads YAML (or
JSON, which YAML parses as well), validates against Pydantic schemas,
and returns typed domain objects. Anything wrong with the document is
a PlanLoadError: the run is fatal and nothing is executed.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from provisioner.core.errors import PlanLoadError
from provisioner.core.models.plan import PlanDocument
from provisioner.core.models.step import Classification, Step

logger = logging.getLogger(__name__)

# Default plan filenames, in lookup order
PLAN_FILES = ("provision.yml", "provision.yaml", "provision.json")


def find_plan_file(start_dir: Path | None = None) -> Path | None:
    """Search for a plan file starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to the plan file, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        for name in PLAN_FILES:
            candidate = current / name
            if candidate.is_file():
                return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def parse_plan(raw: str, source: str = "<string>") -> PlanDocument:
    """Parse and validate plan text.

    The document is either a mapping with a ``steps`` list or a bare
    list of step records.
    """
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise PlanLoadError(f"Invalid YAML in {source}: {e}") from e

    if data is None:
        raise PlanLoadError(f"Plan {source} is empty")

    if isinstance(data, list):
        data = {"steps": data}

    if not isinstance(data, dict):
        raise PlanLoadError(
            f"Expected a mapping or list in {source}, got {type(data).__name__}"
        )

    # Tolerate a wrapping "plan:" key
    if "plan" in data and isinstance(data["plan"], dict) and "steps" not in data:
        data = data["plan"]

    try:
        return PlanDocument.model_validate(data)
    except ValidationError as e:
        raise PlanLoadError(f"Invalid plan in {source}: {e}") from e


def load_plan_document(path: Path | None = None) -> tuple[PlanDocument, Path]:
    """Load and validate a plan document.

    Args:
        path: Explicit path to the plan. If None, searches upward.

    Returns:
        (validated document, resolved path)

    Raises:
        PlanLoadError: If the file is missing or invalid.
    """
    if path is None:
        path = find_plan_file()

    if path is None:
        raise PlanLoadError(
            f"No plan file found ({', '.join(PLAN_FILES)}). Specify --plan."
        )

    if not path.is_file():
        raise PlanLoadError(f"Plan file not found: {path}")

    logger.debug("Loading plan from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise PlanLoadError(f"Cannot read {path}: {e}") from e

    document = anchor_sources(parse_plan(raw, source=str(path)), path.resolve().parent)
    if not document.name:
        document = document.model_copy(update={"name": path.parent.resolve().name})

    logger.info("Loaded plan '%s' with %d steps", document.name, len(document.steps))
    return document, path.resolve()


def anchor_sources(document: PlanDocument, plan_dir: Path) -> PlanDocument:
    """Resolve relative file ``source`` paths against the plan's directory."""
    steps: list[Step] = []
    changed = False
    for step in document.steps:
        source = step.probe.get("source")
        if (
            step.classification == Classification.FILE
            and isinstance(source, str)
            and source
            and not source.startswith("~")
            and not Path(source).is_absolute()
        ):
            probe = {**step.probe, "source": str(plan_dir / source)}
            step = step.model_copy(update={"probe": probe})
            changed = True
        steps.append(step)
    if not changed:
        return document
    return document.model_copy(update={"steps": steps})
