"""Predefined ``simple-cd`` composition tree around ``cd.yml``.

The tree is nested three levels deep:

* ``simple-cd`` (root): a ``cd`` job calling ``cd.yml``;
* ``cd`` (child): the mocked ``cd.yml``, whose ``ci`` job calls ``ci.yml``;
* ``ci`` (grandchild): the mocked ``ci.yml``.

Options from :mod:`act_harness.ci` that target the ``ci.yml`` node work on
this tree unchanged.
"""

from __future__ import annotations

import dataclasses
import logging
import typing as typ

from .ci import CI_JOB, CI_WORKFLOW_FILE, CIInputs, WorkflowLoader, default_loader
from .config import HarnessConfig
from .document import Job, Workflow, set_job_input
from .errors import NotFoundError
from .mocking import VaultSecrets
from .options import (
    TestingWorkflowOption,
    apply_options,
    mutate_child,
    with_mocked_argo_workflow,
    with_workflow_run_id_job,
)
from .options import with_mocked_vault as _with_mocked_vault
from .references import workflow_ref
from .testing import TestingWorkflow, new_child, new_root

if typ.TYPE_CHECKING:
    from .servers import GCOM

__all__ = [
    "CD_JOB",
    "CD_WORKFLOW_FILE",
    "GCOM_API_URL_INPUT",
    "CDInputs",
    "cd_workflow",
    "simple_cd",
    "with_cd_options",
    "with_mocked_argo_workflows",
    "with_mocked_gcom",
    "with_mocked_vault",
    "with_workflow_inputs",
]

logger = logging.getLogger(__name__)

CD_WORKFLOW_FILE = "cd.yml"
CD_JOB = "cd"
GCOM_API_URL_INPUT = "DO-NOT-USE-gcom-api-url"


@dataclasses.dataclass(frozen=True, slots=True)
class CDInputs:
    """Inputs of ``cd.yml``; fields left as None are not set.

    ``ci`` holds the inputs shared with ``ci.yml``.
    """

    ci: CIInputs = dataclasses.field(default_factory=CIInputs)
    environment: str | None = None
    branch: str | None = None
    scopes: str | None = None
    grafana_cloud_deployment_type: str | None = None
    disable_docs_publishing: bool | None = None
    disable_github_release: bool | None = None
    trigger_argo: bool | None = None
    gcom_api_url: str | None = None

    def apply(self, job: Job) -> None:
        """Set the non-None inputs on ``job``."""
        self.ci.apply(job)
        set_job_input(job, "environment", self.environment)
        set_job_input(job, "branch", self.branch)
        set_job_input(job, "scopes", self.scopes)
        set_job_input(job, "grafana-cloud-deployment-type", self.grafana_cloud_deployment_type)
        set_job_input(job, "disable-docs-publishing", self.disable_docs_publishing)
        set_job_input(job, "disable-github-release", self.disable_github_release)
        set_job_input(job, "trigger-argo", self.trigger_argo)
        set_job_input(job, GCOM_API_URL_INPUT, self.gcom_api_url)


def _root_document(config: HarnessConfig) -> Workflow:
    return Workflow(
        name="CD",
        on={"push": {"branches": ["main"]}},
        jobs={
            CD_JOB: Job(
                name="CD",
                uses=workflow_ref(config.base_ref, CD_WORKFLOW_FILE, config.branch),
                permissions={
                    "contents": "write",
                    "id-token": "write",
                    "attestations": "write",
                    "pull-requests": "read",
                },
                with_={
                    "environment": "dev",
                    "branch": "${{ github.event_name == 'push' && github.ref_name || github.ref }}",
                },
            )
        },
    )


def simple_cd(
    *options: TestingWorkflowOption,
    config: HarnessConfig | None = None,
    loader: WorkflowLoader | None = None,
) -> TestingWorkflow:
    """Build the ``simple-cd`` tree and apply ``options`` to its root.

    Each level is linked before the next one is created, so every call is
    redirected to a generated file by the time the options run.

    Raises
    ------
    ParseError
        If ``cd.yml`` or ``ci.yml`` cannot be loaded.
    LinkingError
        If a parent cannot be linked to its child.
    """
    config = config or HarnessConfig()
    loader = loader or default_loader(config)

    root = new_root("simple-cd", _root_document(config), config=config)
    cd = new_child(root, "cd", loader(CD_WORKFLOW_FILE), source=CD_WORKFLOW_FILE)
    root.attach("cd", cd, job_id=CD_JOB)
    ci = new_child(cd, "ci", loader(CI_WORKFLOW_FILE), source=CI_WORKFLOW_FILE)
    cd.attach("ci", ci, job_id=CI_JOB)

    with_workflow_run_id_job()(root)
    root.apply_uuid_suffix()
    apply_options(root, options)
    logger.debug("Built simple-cd tree %s", root.correlation_id)
    return root


def cd_workflow(root: TestingWorkflow) -> TestingWorkflow:
    """Return the ``cd.yml`` node of a ``simple-cd`` tree.

    Raises
    ------
    NotFoundError
        If nothing is attached under ``cd``.
    """
    return root.require_child("cd")


def with_cd_options(*options: TestingWorkflowOption) -> TestingWorkflowOption:
    """Return an option running ``options`` against the ``cd.yml`` node."""
    return mutate_child("cd").with_options(*options)


def with_workflow_inputs(inputs: CDInputs) -> TestingWorkflowOption:
    """Set ``cd.yml`` inputs on the root's ``cd`` job."""

    def _apply(root: TestingWorkflow) -> None:
        job = root.workflow.get_job(CD_JOB)
        if job is None:
            msg = f"job {CD_JOB!r} not found"
            raise NotFoundError(msg, node=root.file_name, job_id=CD_JOB)
        inputs.apply(job)

    return _apply


def with_mocked_argo_workflows() -> TestingWorkflowOption:
    """Mock Argo Workflow triggers in ``cd.yml``."""
    return with_cd_options(with_mocked_argo_workflow())


def with_mocked_vault(secrets: VaultSecrets) -> TestingWorkflowOption:
    """Mock Vault secret steps in ``cd.yml`` and every workflow it calls."""
    return with_cd_options(_with_mocked_vault(secrets, recursive=True))


def with_mocked_gcom(mock: GCOM | str) -> TestingWorkflowOption:
    """Point the catalog API calls of ``cd.yml`` at a mock server.

    ``mock`` is a running :class:`~act_harness.servers.GCOM`, whose container
    URL is used, or an API base URL.
    """
    url = mock if isinstance(mock, str) else mock.docker_accessible_url
    return with_workflow_inputs(CDInputs(gcom_api_url=url))
