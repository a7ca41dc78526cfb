"""Shared markers and fixtures for workflow runs through act."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest
from plumbum import CommandNotFound, ProcessTimedOut, local

from act_harness.act import Runner
from act_harness.config import HarnessConfig


def _act_available() -> bool:
    """Return True if act is installed and runnable."""
    return shutil.which("act") is not None


def _container_runtime_available() -> bool:
    """Return True if a container runtime (docker/podman) is available."""
    for runtime in ("docker", "podman"):
        if shutil.which(runtime) is None:
            continue
        try:
            cmd = local[runtime]
            cmd["info"].run(timeout=10, retcode=None)
        except (ProcessTimedOut, CommandNotFound, OSError):
            continue
        else:
            return True
    return False


def _workflow_tests_enabled() -> bool:
    """Return True if ACT_WORKFLOW_TESTS is set."""
    return os.environ.get("ACT_WORKFLOW_TESTS", "").lower() in ("1", "true", "yes")


skip_unless_act = pytest.mark.skipif(
    not (_act_available() and _container_runtime_available()),
    reason="act or container runtime not available",
)

skip_unless_workflow_tests = pytest.mark.skipif(
    not _workflow_tests_enabled(),
    reason="ACT_WORKFLOW_TESTS not set (opt-in required)",
)


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    """Git checkout standing in for the workflows repository."""
    root = tmp_path / "repo"
    (root / ".github" / "workflows").mkdir(parents=True)
    (root / "tests" / "act" / "mockdata").mkdir(parents=True)
    git = local["git"]
    git["init", "-q", "-b", "main", str(root)]()
    git[
        "-C", str(root),
        "-c", "user.name=act-harness",
        "-c", "user.email=act-harness@example.com",
        "commit", "-q", "--allow-empty", "-m", "init",
    ]()  # fmt: skip
    return root


@pytest.fixture
def act_runner(repo_root: Path, tmp_path: Path) -> Runner:
    """Runner mapping ``org/pci-workflows`` to ``repo_root``."""
    config = HarnessConfig.from_env().with_overrides(
        base_ref="org/pci-workflows/.github/workflows",
        repository="org/pci-workflows",
        act_timeout=300,
    )
    return Runner(
        config=config,
        repo_root=repo_root,
        gcs_path=tmp_path / "gcs",
        actions_cache_path=tmp_path / "cache",
    )
