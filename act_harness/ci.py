"""Predefined ``simple-ci`` composition tree around ``ci.yml``.

The tree has two nodes: a root ``simple-ci`` workflow with a ``ci`` job that
calls the mocked copy of ``ci.yml``, attached under the key ``ci``.
CI-specific options locate the ``ci.yml`` node themselves, so they work the
same whether the tree is ``simple-ci`` or ``simple-cd``.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import typing as typ

from .config import HarnessConfig
from .document import Job, Step, Workflow, load_workflow, set_job_input
from .errors import MutationError, NotFoundError
from .mocking import copy_mock_files_step, validate_output_references
from .options import (
    TestingWorkflowOption,
    apply_options,
    with_mocked_gcs,
    with_workflow_run_id_job,
)
from .references import workflow_ref
from .testing import TestingWorkflow, new_child, new_root

__all__ = [
    "CI_JOB",
    "CI_WORKFLOW_FILE",
    "CIInputs",
    "WorkflowContext",
    "WorkflowLoader",
    "ci_workflow",
    "default_loader",
    "mock_workflow_context_step",
    "simple_ci",
    "with_ci_options",
    "with_mocked_dist",
    "with_mocked_gcs_uploads",
    "with_mocked_packaged_dist_artifacts",
    "with_mocked_workflow_context",
    "with_workflow_inputs",
]

logger = logging.getLogger(__name__)

CI_WORKFLOW_FILE = "ci.yml"
CI_JOB = "ci"
TEST_AND_BUILD_JOB = "test-and-build"
WORKFLOW_CONTEXT_STEP = "workflow-context"

WorkflowLoader: typ.TypeAlias = typ.Callable[[str], Workflow]


def default_loader(config: HarnessConfig) -> WorkflowLoader:
    """Return a loader reading workflow files from ``config.workflows_dir``."""

    def _load(file_name: str) -> Workflow:
        return load_workflow(config.workflows_dir / file_name)

    return _load


@dataclasses.dataclass(frozen=True, slots=True)
class CIInputs:
    """Inputs of ``ci.yml``; fields left as None are not set."""

    plugin_directory: str | None = None
    dist_artifacts_prefix: str | None = None
    run_playwright: bool | None = None
    run_plugin_validator: bool | None = None
    plugin_validator_config: str | None = None
    run_trufflehog: bool | None = None
    allow_unsigned: bool | None = None
    testing: bool | None = None

    def apply(self, job: Job) -> None:
        """Set the non-None inputs on ``job``."""
        set_job_input(job, "plugin-directory", self.plugin_directory)
        set_job_input(job, "dist-artifacts-prefix", self.dist_artifacts_prefix)
        set_job_input(job, "run-playwright", self.run_playwright)
        set_job_input(job, "run-plugin-validator", self.run_plugin_validator)
        set_job_input(job, "plugin-validator-config", self.plugin_validator_config)
        set_job_input(job, "run-trufflehog", self.run_trufflehog)
        set_job_input(job, "allow-unsigned", self.allow_unsigned)
        set_job_input(job, "testing", self.testing)


def _root_document(config: HarnessConfig) -> Workflow:
    return Workflow(
        name="CI",
        on={"push": {"branches": ["main"]}, "pull_request": {"branches": ["main"]}},
        jobs={
            CI_JOB: Job(
                name="CI",
                uses=workflow_ref(config.base_ref, CI_WORKFLOW_FILE, config.branch),
                permissions={"contents": "read", "id-token": "write"},
                with_={
                    "plugin-version-suffix": (
                        "${{ github.event_name == 'pull_request' "
                        "&& github.event.pull_request.head.sha || '' }}"
                    ),
                    "testing": True,
                },
                secrets={"GITHUB_TOKEN": "${{ secrets.GITHUB_TOKEN }}"},
            )
        },
    )


def simple_ci(
    *options: TestingWorkflowOption,
    config: HarnessConfig | None = None,
    loader: WorkflowLoader | None = None,
) -> TestingWorkflow:
    """Build the ``simple-ci`` tree and apply ``options`` to its root.

    The root gets the workflow run ID job and every job of the tree gets the
    correlation ID suffix before the options run.

    Raises
    ------
    ParseError
        If ``ci.yml`` cannot be loaded.
    LinkingError
        If the root cannot be linked to the ``ci.yml`` node.
    """
    config = config or HarnessConfig()
    loader = loader or default_loader(config)

    root = new_root("simple-ci", _root_document(config), config=config)
    ci = new_child(root, "ci", loader(CI_WORKFLOW_FILE), source=CI_WORKFLOW_FILE)
    root.attach("ci", ci, job_id=CI_JOB)

    with_workflow_run_id_job()(root)
    root.apply_uuid_suffix()
    apply_options(root, options)
    logger.debug("Built simple-ci tree %s", root.correlation_id)
    return root


def ci_workflow(root: TestingWorkflow) -> TestingWorkflow:
    """Return the node wrapping ``ci.yml`` inside the tree rooted at ``root``.

    Raises
    ------
    NotFoundError
        If no node of the tree was loaded from ``ci.yml``.
    """
    for node in root.walk():
        if node.source == CI_WORKFLOW_FILE:
            return node
    msg = f"no {CI_WORKFLOW_FILE} workflow in tree"
    raise NotFoundError(msg, node=root.file_name)


def with_ci_options(*options: TestingWorkflowOption) -> TestingWorkflowOption:
    """Return an option running ``options`` against the ``ci.yml`` node."""

    def _apply(root: TestingWorkflow) -> None:
        apply_options(ci_workflow(root), options)

    return _apply


def with_workflow_inputs(inputs: CIInputs) -> TestingWorkflowOption:
    """Set ``ci.yml`` inputs on the root's ``ci`` job."""

    def _apply(root: TestingWorkflow) -> None:
        job = root.workflow.get_job(CI_JOB)
        if job is None:
            msg = f"job {CI_JOB!r} not found"
            raise NotFoundError(msg, node=root.file_name, job_id=CI_JOB)
        inputs.apply(job)

    return _apply


def _test_and_build(node: TestingWorkflow) -> Job:
    job = node.workflow.get_job(TEST_AND_BUILD_JOB)
    if job is None:
        msg = f"job {TEST_AND_BUILD_JOB!r} not found"
        raise NotFoundError(msg, node=node.file_name, job_id=TEST_AND_BUILD_JOB)
    return job


def _mutation_error(node: TestingWorkflow, exc: MutationError) -> MutationError:
    return MutationError(str(exc), node=node.file_name, job_id=TEST_AND_BUILD_JOB)


def _mock_dist(node: TestingWorkflow, dist_folder: str) -> None:
    if not (node.config.mockdata_dir / dist_folder / "plugin.json").is_file():
        msg = (
            f"mock dist folder {dist_folder!r} doesn't seem to contain dist "
            "artifacts (plugin.json is missing)"
        )
        raise MutationError(msg, node=node.file_name)
    job = _test_and_build(node)
    try:
        job.replace_step(
            "frontend",
            copy_mock_files_step(
                dist_folder, "${{ github.workspace }}/${{ inputs.plugin-directory }}/dist/"
            ),
        )
        job.remove_step("backend")
    except MutationError as exc:
        raise _mutation_error(node, exc) from exc


def with_mocked_dist(dist_folder: str) -> TestingWorkflowOption:
    """Copy pre-built dist files instead of building the plugin.

    ``dist_folder`` is relative to the mock data directory, e.g.
    ``dist/simple-frontend``, and must contain a ``plugin.json``.
    """

    def _apply(root: TestingWorkflow) -> None:
        _mock_dist(ci_workflow(root), dist_folder)

    return _apply


def _packaged_step(packaged_folder: str, dest: str, *, universal: bool) -> Step:
    step = copy_mock_files_step(packaged_folder, dest)
    if universal:
        # The universal ZIP is the only one without an os_arch separator.
        listing = f"ls -1 {dest}/*.zip | xargs -n 1 basename | grep -v '_'"
    else:
        listing = f"ls -1 {dest}/*.zip | xargs -n 1 basename | grep '_' | jq -RncM '[inputs]'"
    step.run += f'\necho zip=$({listing}) >> "${{GITHUB_OUTPUT}}"'
    return step


def with_mocked_packaged_dist_artifacts(
    dist_folder: str, packaged_folder: str
) -> TestingWorkflowOption:
    """Copy pre-packaged ZIP files instead of building and packaging.

    The unpackaged dist files are mocked too (see :func:`with_mocked_dist`),
    so later steps reading ``plugin.json`` still find it.
    """

    def _apply(root: TestingWorkflow) -> None:
        node = ci_workflow(root)
        folder = node.config.mockdata_dir / packaged_folder
        try:
            has_zip = any(p.is_file() and p.suffix == ".zip" for p in folder.iterdir())
        except OSError as exc:
            msg = f"could not read packaged dist folder {packaged_folder!r}: {exc}"
            raise MutationError(msg, node=node.file_name) from exc
        if not has_zip:
            msg = f"packaged dist folder {packaged_folder!r} doesn't contain any ZIP files"
            raise MutationError(msg, node=node.file_name)

        _mock_dist(node, dist_folder)
        job = _test_and_build(node)
        dest = "${{ github.workspace }}/${{ inputs.plugin-directory }}/dist-artifacts/"
        try:
            for step_id in ("setup", "replace-plugin-version"):
                job.remove_step(step_id)
            job.replace_step(
                "universal-zip", _packaged_step(packaged_folder, dest, universal=True)
            )
            job.replace_step(
                "os-arch-zips", _packaged_step(packaged_folder, dest, universal=False)
            )
        except MutationError as exc:
            raise _mutation_error(node, exc) from exc

    return _apply


@dataclasses.dataclass(frozen=True, slots=True)
class WorkflowContext:
    """Result of the ``workflow-context`` step."""

    is_trusted: bool = False
    is_fork_pr: bool = False

    def to_json(self) -> str:
        """Return the JSON payload the real step emits."""
        return json.dumps({"isTrusted": self.is_trusted, "isForkPR": self.is_fork_pr})


def mock_workflow_context_step(context: WorkflowContext) -> Step:
    """Return a step emitting ``context`` as its ``result`` output."""
    return Step(
        name="Determine workflow context (mocked)",
        run='echo "result=$RESULT" >> "$GITHUB_OUTPUT"',
        env={"RESULT": context.to_json()},
        shell="bash",
    )


def with_mocked_workflow_context(context: WorkflowContext) -> TestingWorkflowOption:
    """Make the ``workflow-context`` step report ``context``."""

    def _apply(root: TestingWorkflow) -> None:
        node = ci_workflow(root)
        job = _test_and_build(node)
        index = job.step_index(WORKFLOW_CONTEXT_STEP)
        try:
            job.replace_step(WORKFLOW_CONTEXT_STEP, mock_workflow_context_step(context))
        except MutationError as exc:
            raise _mutation_error(node, exc) from exc
        validate_output_references(
            job, index, node=node.file_name, job_id=TEST_AND_BUILD_JOB
        )

    return _apply


def with_mocked_gcs_uploads() -> TestingWorkflowOption:
    """Mock GCS login and upload steps of the ``ci.yml`` node."""
    return with_ci_options(with_mocked_gcs())

