"""Workflow and event files handed to act."""

from __future__ import annotations

import json
import logging
import re
import tempfile
import typing as typ
from pathlib import Path

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .testing import TestingWorkflow

__all__ = [
    "WORKFLOW_FILE_GLOB",
    "cleanup_workflow_files",
    "create_event_file",
    "extract_external_actions",
    "remove_workflow_files",
    "write_workflow_tree",
]

logger = logging.getLogger(__name__)

WORKFLOW_FILE_GLOB = "act-*.yml"


def write_workflow_tree(root: TestingWorkflow, directory: Path) -> list[Path]:
    """Write every node of the tree rooted at ``root`` into ``directory``.

    act only resolves reusable workflows of the local repository when they
    live in its workflows directory, so ``directory`` is normally
    ``.github/workflows``.

    Returns
    -------
    list[Path]
        Written paths, root first.
    """
    directory.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for node in root.walk():
        path = directory / node.file_name
        path.write_text(node.marshal(), encoding="utf-8")
        logger.info("Wrote workflow file %s", path)
        written.append(path)
    return written


def remove_workflow_files(paths: cabc.Iterable[Path]) -> None:
    """Delete ``paths``, ignoring files that are already gone."""
    for path in paths:
        path.unlink(missing_ok=True)
        logger.info("Removed workflow file %s", path)


def cleanup_workflow_files(directory: Path) -> list[Path]:
    """Delete stale generated workflow files from ``directory``.

    Returns
    -------
    list[Path]
        The removed files.
    """
    stale = sorted(directory.glob(WORKFLOW_FILE_GLOB))
    remove_workflow_files(stale)
    return stale


def create_event_file(payload: typ.Mapping[str, typ.Any] | None = None) -> Path:
    """Write an event payload to a temporary JSON file and return its path.

    The payload always carries ``"act": true`` so workflows can detect local
    runs. The caller removes the file.
    """
    data = {**(payload or {}), "act": True}
    with tempfile.NamedTemporaryFile(
        "w", prefix="act-", suffix="-event.json", delete=False, encoding="utf-8"
    ) as handle:
        json.dump(data, handle)
    return Path(handle.name)


_USES_RE = re.compile(r"""uses:\s*["']?([^@\s"'#]+@[^\s"'#]+)""")


def extract_external_actions(
    *directories: Path, internal_prefix: str = ""
) -> list[str]:
    """Return the pinned ``owner/repo@ref`` references used by YAML files.

    Every ``.yml`` and ``.yaml`` file under ``directories`` is scanned.
    References starting with ``internal_prefix`` (normally the repository
    under test) are skipped, since act maps them to the local checkout.
    The result is deduplicated and sorted, ready for warming up act's
    action cache.

    Raises
    ------
    OSError
        If a workflow file cannot be read.
    """
    found: set[str] = set()
    for directory in directories:
        for path in sorted(directory.rglob("*")):
            if path.suffix not in (".yml", ".yaml") or not path.is_file():
                continue
            for match in _USES_RE.finditer(path.read_text(encoding="utf-8")):
                action = match[1]
                if internal_prefix and action.startswith(internal_prefix):
                    continue
                found.add(action)
    logger.debug("Found %d external action reference(s)", len(found))
    return sorted(found)
