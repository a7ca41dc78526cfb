"""Command line interface for rendering and cleaning up testing workflows.

Examples
--------
Render the ``simple-cd`` tree into ``.github/workflows``::

    act-harness render cd

Remove generated files left behind by interrupted runs::

    act-harness cleanup

List the pinned actions to pre-fetch into act's action cache::

    act-harness external-actions .github/workflows actions

Print the newest Node.js 24 release::

    act-harness node-version 24
"""

from __future__ import annotations

import logging
import sys
import typing as typ
from pathlib import Path

import cyclopts
from cyclopts import App, Parameter

from .cd import simple_cd
from .ci import simple_ci
from .config import HarnessConfig
from .errors import HarnessError
from .files import (
    cleanup_workflow_files,
    extract_external_actions,
    write_workflow_tree,
)
from .versions import latest_go_version, latest_node_version

app: App = App(
    name="act-harness",
    help="Build and render mocked workflow trees for local act runs.",
    config=cyclopts.config.Env("ACT_HARNESS_CLI_", command=False),
)

_BUILDERS = {"ci": simple_ci, "cd": simple_cd}


def _load_config() -> HarnessConfig:
    try:
        config = HarnessConfig.from_env()
    except ValueError as exc:
        _fail(exc)
    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return config


def _fail(exc: Exception) -> typ.NoReturn:
    print(f"::error::{exc}", file=sys.stderr)
    raise SystemExit(1) from exc


@app.command
def render(
    kind: typ.Literal["ci", "cd"],
    *,
    output_dir: typ.Annotated[Path | None, Parameter(name="--output-dir")] = None,
) -> None:
    """Write every workflow file of a predefined tree.

    Parameters
    ----------
    kind
        ``ci`` for the ``simple-ci`` tree, ``cd`` for ``simple-cd``.
    output_dir
        Destination directory; defaults to the configured workflows directory.
    """
    config = _load_config()
    try:
        root = _BUILDERS[kind](config=config)
        paths = write_workflow_tree(root, output_dir or config.workflows_dir)
    except HarnessError as exc:
        _fail(exc)
    for path in paths:
        print(path)


@app.command
def cleanup(
    *,
    directory: typ.Annotated[Path | None, Parameter(name="--directory")] = None,
) -> None:
    """Remove generated ``act-*.yml`` workflow files."""
    config = _load_config()
    try:
        removed = cleanup_workflow_files(directory or config.workflows_dir)
    except OSError as exc:
        _fail(exc)
    print(f"Removed {len(removed)} workflow file(s)", file=sys.stderr)


@app.command
def external_actions(*directories: Path) -> None:
    """Print the pinned external actions used by workflow and action files.

    Parameters
    ----------
    directories
        Directories to scan; defaults to the configured workflows directory.
        References to the configured repository are skipped.
    """
    config = _load_config()
    try:
        actions = extract_external_actions(
            *(directories or (config.workflows_dir,)),
            internal_prefix=config.repository,
        )
    except OSError as exc:
        _fail(exc)
    for action in actions:
        print(action)


@app.command
def node_version(major: str) -> None:
    """Print the newest Node.js release for MAJOR, e.g. ``24``."""
    _load_config()
    try:
        print(latest_node_version(major))
    except HarnessError as exc:
        _fail(exc)


@app.command
def go_version(major_minor: str) -> None:
    """Print the newest stable Go release for MAJOR_MINOR, e.g. ``1.25``."""
    _load_config()
    try:
        print(latest_go_version(major_minor))
    except HarnessError as exc:
        _fail(exc)


if __name__ == "__main__":
    app()
