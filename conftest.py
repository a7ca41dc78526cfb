"""Pytest configuration for act harness tests."""

from __future__ import annotations

import itertools
import typing as typ
from pathlib import Path

import pytest

from act_harness.config import HarnessConfig
from act_harness.document import Workflow, load_workflow

FIXTURES_DIR = Path(__file__).resolve().parent / "tests" / "fixtures"
TEST_REPOSITORY = "org/pci-workflows"
TEST_BASE_REF = f"{TEST_REPOSITORY}/.github/workflows"


def _sequential_ids() -> typ.Callable[[], str]:
    """Return a factory producing predictable 32-digit hex correlation IDs."""
    counter = itertools.count(1)
    return lambda: f"{next(counter):032x}"


@pytest.fixture
def workflows_dir() -> Path:
    """Directory holding the ``ci.yml`` and ``cd.yml`` fixtures."""
    return FIXTURES_DIR / "workflows"


@pytest.fixture
def mockdata_dir(tmp_path: Path) -> Path:
    """Empty mock data directory for a single test."""
    path = tmp_path / "mockdata"
    path.mkdir()
    return path


@pytest.fixture
def config(workflows_dir: Path, mockdata_dir: Path) -> HarnessConfig:
    """Harness configuration reading fixtures and drawing sequential IDs."""
    return HarnessConfig(
        base_ref=TEST_BASE_REF,
        repository=TEST_REPOSITORY,
        workflows_dir=workflows_dir,
        mockdata_dir=mockdata_dir,
        id_factory=_sequential_ids(),
    )


@pytest.fixture
def ci_document(workflows_dir: Path) -> Workflow:
    """Parsed ``ci.yml`` fixture."""
    return load_workflow(workflows_dir / "ci.yml")


@pytest.fixture
def cd_document(workflows_dir: Path) -> Workflow:
    """Parsed ``cd.yml`` fixture."""
    return load_workflow(workflows_dir / "cd.yml")
