"""Compose, mock and run GitHub Actions reusable workflows locally with act.

A test builds a composition tree (see :func:`act_harness.ci.simple_ci` and
:func:`act_harness.cd.simple_cd`), applies options that mock steps reaching
external services, and hands the tree to :class:`act_harness.act.Runner`.
"""

from __future__ import annotations

from .act import Event, EventKind, RunResult, Runner
from .cd import CDInputs, simple_cd
from .ci import CIInputs, WorkflowContext, simple_ci
from .config import HarnessConfig
from .document import Job, Step, Workflow, commands, load_workflow, parse_workflow
from .errors import (
    ActError,
    HarnessError,
    LinkingError,
    MutationError,
    NotFoundError,
    ParseError,
    StorageError,
    VersionLookupError,
)
from .mocking import VaultSecrets
from .options import Mutator, TestingWorkflowOption
from .servers import GCOM, HTTPSpy
from .storage import ArtifactsStorage, MockGCS
from .testing import TestingWorkflow, new_child, new_root

__all__ = [
    "GCOM",
    "ActError",
    "ArtifactsStorage",
    "CDInputs",
    "CIInputs",
    "Event",
    "EventKind",
    "HarnessConfig",
    "HTTPSpy",
    "HarnessError",
    "Job",
    "LinkingError",
    "MockGCS",
    "MutationError",
    "Mutator",
    "NotFoundError",
    "ParseError",
    "RunResult",
    "Runner",
    "Step",
    "StorageError",
    "TestingWorkflow",
    "TestingWorkflowOption",
    "VaultSecrets",
    "VersionLookupError",
    "Workflow",
    "WorkflowContext",
    "commands",
    "load_workflow",
    "new_child",
    "new_root",
    "parse_workflow",
    "simple_cd",
    "simple_ci",
]
