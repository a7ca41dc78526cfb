"""Composable mutations applied to a built composition tree.

An option is a callable taking a :class:`~act_harness.testing.TestingWorkflow`
and mutating it in place. Options run strictly in the order given, after
every child has been attached, so they may rely on rewritten references.
Later options may depend on the effect of earlier ones; they are not
guaranteed to commute.

A :class:`Mutator` resolves the node(s) an option should run against:

>>> opt = mutate_path("cd", "ci").with_options(without_job("playwright"))
"""

from __future__ import annotations

import collections.abc as cabc
import contextlib
import dataclasses
import functools
import logging
import typing as typ

from .document import Job, Step
from .errors import MutationError, NotFoundError
from .mocking import (
    ARGO_WORKFLOW_ACTION,
    GCS_LOGIN_ACTION,
    GCS_UPLOAD_ACTION,
    GITHUB_APP_TOKEN_ACTION,
    MOCK_GITHUB_APP_TOKEN,
    VAULT_SECRETS_ACTION,
    VaultSecrets,
    mock_argo_workflow_step,
    mock_gcs_upload_step,
    mock_github_app_token_step,
    mock_http_spy_step,
    mock_secrets_step,
    mock_vault_secrets_step,
    no_op_step,
    validate_output_references,
)

if typ.TYPE_CHECKING:
    from .servers import HTTPSpy
    from .testing import TestingWorkflow

__all__ = [
    "RUN_ID_JOB",
    "RUN_ID_STEP",
    "Mutator",
    "TestingWorkflowOption",
    "apply_options",
    "mutate_all",
    "mutate_child",
    "mutate_path",
    "mutate_root",
    "with_injected_steps",
    "with_mocked_argo_workflow",
    "with_mocked_gcs",
    "with_mocked_github_app_token",
    "with_mocked_secrets",
    "with_mocked_vault",
    "with_no_op_step",
    "with_only_one_job",
    "with_pull_request_target_trigger",
    "with_remove_all_steps_after",
    "with_replaced_step",
    "with_spied_action",
    "with_workflow_run_id_job",
    "without_job",
]

logger = logging.getLogger(__name__)

TestingWorkflowOption: typ.TypeAlias = typ.Callable[["TestingWorkflow"], None]

RUN_ID_JOB = "get-workflow-run-id"
RUN_ID_STEP = "run-id"


def apply_options(
    node: TestingWorkflow, options: cabc.Iterable[TestingWorkflowOption]
) -> None:
    """Run ``options`` against ``node`` in order."""
    for option in options:
        option(node)


@dataclasses.dataclass(frozen=True, slots=True)
class Mutator:
    """Selects the node(s) of a tree that a group of options mutates.

    Attributes
    ----------
    paths : tuple[tuple[str, ...], ...]
        Child key paths from the root; the empty path is the root itself.
    all_nodes : bool
        Select every node of the tree, parents first.
    """

    paths: tuple[tuple[str, ...], ...] = ((),)
    all_nodes: bool = False

    def resolve(self, root: TestingWorkflow) -> list[TestingWorkflow]:
        """Return the selected nodes.

        Raises
        ------
        NotFoundError
            If a selected path does not exist in the tree.
        """
        if self.all_nodes:
            return root.walk()
        return [root.require_child(*path) for path in self.paths]

    def with_options(self, *options: TestingWorkflowOption) -> TestingWorkflowOption:
        """Return an option running ``options`` against every selected node."""

        def _apply(root: TestingWorkflow) -> None:
            for node in self.resolve(root):
                apply_options(node, options)

        return _apply


def mutate_root() -> Mutator:
    """Select the node the option is applied to."""
    return Mutator()


def mutate_child(key: str) -> Mutator:
    """Select the direct child attached under ``key``."""
    return Mutator(paths=((key,),))


def mutate_path(*keys: str) -> Mutator:
    """Select the descendant reached by following ``keys``."""
    return Mutator(paths=(tuple(keys),))


def mutate_all() -> Mutator:
    """Select every node of the tree."""
    return Mutator(all_nodes=True)


def _require_job(node: TestingWorkflow, job_id: str) -> Job:
    job = node.workflow.get_job(job_id)
    if job is None:
        msg = f"job {job_id!r} not found"
        raise NotFoundError(msg, node=node.file_name, job_id=job_id)
    return job


@contextlib.contextmanager
def _editing(node: TestingWorkflow, job_id: str) -> cabc.Iterator[Job]:
    """Yield the job ``job_id``, adding node and job context to mutation errors."""
    job = _require_job(node, job_id)
    try:
        yield job
    except MutationError as exc:
        if exc.node is not None:
            raise
        raise MutationError(
            str(exc), node=node.file_name, job_id=job_id, step_index=exc.step_index
        ) from exc


def with_pull_request_target_trigger(
    branches: cabc.Sequence[str] = ("main",),
) -> TestingWorkflowOption:
    """Add a ``pull_request_target`` trigger for ``branches``."""

    def _apply(node: TestingWorkflow) -> None:
        node.workflow.set_trigger("pull_request_target", {"branches": list(branches)})

    return _apply


def with_remove_all_steps_after(job_id: str, step_id: str) -> TestingWorkflowOption:
    """Stop ``job_id`` after ``step_id``, dropping every later step."""

    def _apply(node: TestingWorkflow) -> None:
        with _editing(node, job_id) as job:
            job.remove_all_steps_after(step_id)

    return _apply


def with_only_one_job(job_id: str) -> TestingWorkflowOption:
    """Keep only ``job_id`` and the jobs it needs."""

    def _apply(node: TestingWorkflow) -> None:
        keep = {job_id, *_require_job(node, job_id).needs}
        jobs = node.workflow.jobs
        for jid in [jid for jid in jobs if jid not in keep]:
            del jobs[jid]

    return _apply


def without_job(job_id: str) -> TestingWorkflowOption:
    """Remove ``job_id`` and any ``needs`` entries pointing at it.

    A missing job is ignored.
    """

    def _apply(node: TestingWorkflow) -> None:
        jobs = node.workflow.jobs
        if jobs.pop(job_id, None) is None:
            return
        for job in jobs.values():
            job.needs = [need for need in job.needs if need != job_id]

    return _apply


def with_no_op_step(job_id: str, step_id: str) -> TestingWorkflowOption:
    """Replace ``step_id`` of ``job_id`` with a step that does nothing."""

    def _apply(node: TestingWorkflow) -> None:
        with _editing(node, job_id) as job:
            step = job.get_step(step_id)
            if step is None:
                msg = f"step with id {step_id!r} not found"
                raise MutationError(msg)
            job.replace_step(step_id, no_op_step(step))

    return _apply


def with_replaced_step(job_id: str, step_id: str, *steps: Step) -> TestingWorkflowOption:
    """Replace ``step_id`` of ``job_id`` with ``steps``.

    The first replacement keeps the original ``id`` and every replacement
    keeps its ``if``; see :meth:`act_harness.document.Job.replace_step`.
    Outputs still read later in the job must be declared by the replacement.
    """

    def _apply(node: TestingWorkflow) -> None:
        with _editing(node, job_id) as job:
            index = job.step_index(step_id)
            job.replace_step(step_id, *steps)
            validate_output_references(job, index)

    return _apply


def with_injected_steps(
    job_id: str,
    steps: cabc.Sequence[Step],
    *,
    after: bool = False,
    step_id: str | None = None,
    index: int | None = None,
) -> TestingWorkflowOption:
    """Insert ``steps`` into ``job_id`` around an anchor step.

    See :meth:`act_harness.document.Job.inject_steps` for the anchor rules.
    """

    def _apply(node: TestingWorkflow) -> None:
        with _editing(node, job_id) as job:
            job.inject_steps(steps, after=after, step_id=step_id, index=index)

    return _apply


def with_mocked_secrets(
    action: str, secrets: typ.Mapping[str, str], *, recursive: bool = False
) -> TestingWorkflowOption:
    """Replace steps using ``action`` with steps outputting exactly ``secrets``."""
    transform = functools.partial(mock_secrets_step, secrets=secrets)

    def _apply(node: TestingWorkflow) -> None:
        node.mock_all_steps_using_action(action, transform, recursive=recursive)

    return _apply


def with_mocked_vault(
    secrets: VaultSecrets, *, recursive: bool = False
) -> TestingWorkflowOption:
    """Replace ``get-vault-secrets`` steps with ones returning ``secrets``."""
    transform = functools.partial(mock_vault_secrets_step, secrets=secrets)

    def _apply(node: TestingWorkflow) -> None:
        node.mock_all_steps_using_action(
            VAULT_SECRETS_ACTION, transform, recursive=recursive
        )

    return _apply


def with_mocked_gcs(*, recursive: bool = False) -> TestingWorkflowOption:
    """Copy GCS uploads into the local ``/gcs`` mount instead of uploading.

    GCS login steps are no-op'ed. Their outputs, such as ``id_token``, are not
    checked; replace the login step with :func:`with_replaced_step` when a
    later step reads them.
    """

    def _apply(node: TestingWorkflow) -> None:
        node.mock_all_steps_using_action(
            GCS_LOGIN_ACTION, no_op_step, recursive=recursive, validate=False
        )
        node.mock_all_steps_using_action(
            GCS_UPLOAD_ACTION, mock_gcs_upload_step, recursive=recursive
        )

    return _apply


def with_mocked_github_app_token(
    token: str = MOCK_GITHUB_APP_TOKEN, *, recursive: bool = False
) -> TestingWorkflowOption:
    """Replace ``create-github-app-token`` steps with ones emitting ``token``."""
    transform = functools.partial(mock_github_app_token_step, token=token)

    def _apply(node: TestingWorkflow) -> None:
        node.mock_all_steps_using_action(
            GITHUB_APP_TOKEN_ACTION, transform, recursive=recursive
        )

    return _apply


def with_mocked_argo_workflow(*, recursive: bool = False) -> TestingWorkflowOption:
    """Replace Argo Workflow triggers with steps emitting a fixed ``uri``."""

    def _apply(node: TestingWorkflow) -> None:
        node.mock_all_steps_using_action(
            ARGO_WORKFLOW_ACTION, mock_argo_workflow_step, recursive=recursive
        )

    return _apply


def with_spied_action(
    action: str, spy: HTTPSpy, *, recursive: bool = False
) -> TestingWorkflowOption:
    """Replace steps using ``action`` with calls to ``spy``.

    Each replaced step posts its inputs to the spy and outputs the values of
    :attr:`HTTPSpy.outputs <act_harness.servers.HTTPSpy.outputs>`.
    """
    transform = functools.partial(
        mock_http_spy_step, url=spy.docker_accessible_url, outputs=tuple(spy.outputs)
    )

    def _apply(node: TestingWorkflow) -> None:
        node.mock_all_steps_using_action(action, transform, recursive=recursive)

    return _apply


def _run_id_job() -> Job:
    return Job(
        name="Get workflow run ID",
        runs_on="ubuntu-arm64-small",
        steps=[
            Step(
                name="Get workflow run ID",
                id=RUN_ID_STEP,
                run="echo run-id=${{ github.run_id }} >> $GITHUB_OUTPUT",
                shell="bash",
            )
        ],
    )


def with_workflow_run_id_job() -> TestingWorkflowOption:
    """Add a job exposing the workflow run ID, needed by every other job.

    The run ID identifies the artifacts a run uploaded.
    """

    def _apply(node: TestingWorkflow) -> None:
        jobs = node.workflow.jobs
        if RUN_ID_JOB not in jobs:
            node.workflow.jobs = {RUN_ID_JOB: _run_id_job(), **jobs}
        for jid, job in node.workflow.jobs.items():
            if jid != RUN_ID_JOB and RUN_ID_JOB not in job.needs:
                job.needs.append(RUN_ID_JOB)

    return _apply
