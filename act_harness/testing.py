"""Composition trees of temporary workflows.

A :class:`TestingWorkflow` wraps one workflow document and owns the mocked
copies of the reusable workflows it calls. Every node of a tree shares one
correlation ID, which is embedded in file names and job names so parallel
act runs never collide.

Trees are built shallow-first: create the root, create each child with
:func:`new_child`, then :meth:`TestingWorkflow.attach` it so the parent's
call is redirected to the child's generated file before grandchildren are
added.
"""

from __future__ import annotations

import dataclasses
import logging
import typing as typ

from .config import HarnessConfig
from .document import Job, Workflow, serialize_workflow
from .errors import LinkingError, MutationError, NotFoundError
from .matcher import StepMatch, find_steps
from .mocking import StepTransform, mock_step, validate_output_references
from .references import workflow_file_name, workflow_ref

__all__ = [
    "ComposableWorkflow",
    "TestingWorkflow",
    "new_child",
    "new_root",
]

logger = logging.getLogger(__name__)


@typ.runtime_checkable
class ComposableWorkflow(typ.Protocol):
    """Uniform view of any node that can be written out and traversed."""

    @property
    def file_name(self) -> str: ...

    def jobs(self) -> dict[str, Job]: ...

    def children(self) -> list[TestingWorkflow]: ...

    def marshal(self) -> str: ...


@dataclasses.dataclass(slots=True, eq=False)
class TestingWorkflow:
    """A node of a composition tree.

    Attributes
    ----------
    base_name : str
        Readable part of the generated file name, e.g. ``cd``.
    workflow : Workflow
        The wrapped document. It is a private copy and may be mutated freely.
    correlation_id : str
        Identifier shared by every node of the tree.
    config : HarnessConfig
        Settings used to format references to generated files.
    source : str
        Logical workflow file the document was loaded from, e.g. ``cd.yml``.
        Parents calling this file are rewritten on :meth:`attach`.
    parent : TestingWorkflow | None
        The node this one is attached to.
    """

    __test__ = False

    base_name: str
    workflow: Workflow
    correlation_id: str
    config: HarnessConfig
    source: str
    parent: TestingWorkflow | None = dataclasses.field(default=None, repr=False)
    _children: dict[str, TestingWorkflow] = dataclasses.field(
        default_factory=dict, repr=False
    )

    @property
    def file_name(self) -> str:
        """Return the generated file name, stable for the node's lifetime."""
        return f"act-{self.base_name}-{self.correlation_id}.yml"

    @property
    def reference(self) -> str:
        """Return the ``uses`` reference that points at this node's file."""
        return workflow_ref(self.config.base_ref, self.file_name, self.config.branch)

    def jobs(self) -> dict[str, Job]:
        """Return the jobs of the wrapped document."""
        return self.workflow.jobs

    def marshal(self) -> str:
        """Serialise the wrapped document to YAML."""
        return serialize_workflow(self.workflow)

    # Navigation

    def children(self) -> list[TestingWorkflow]:
        """Return direct children in attachment order."""
        return list(self._children.values())

    def child_keys(self) -> list[str]:
        """Return the keys of direct children in attachment order."""
        return list(self._children)

    def get_child(self, key: str) -> TestingWorkflow | None:
        """Return the child attached under ``key``, or None when absent."""
        return self._children.get(key)

    def require_child(self, *path: str) -> TestingWorkflow:
        """Return the descendant reached by following ``path`` from this node.

        Raises
        ------
        NotFoundError
            If any key along ``path`` has no child attached.
        """
        node = self
        for depth, key in enumerate(path):
            child = node.get_child(key)
            if child is None:
                walked = "/".join(path[: depth + 1])
                msg = f"child workflow {walked!r} not found"
                raise NotFoundError(msg, node=node.file_name)
            node = child
        return node

    def walk(self) -> list[TestingWorkflow]:
        """Return this node and every descendant, depth-first, parents first."""
        nodes = [self]
        for child in self._children.values():
            nodes.extend(child.walk())
        return nodes

    # Linking

    def _calls(
        self, targets: set[str], job_id: str | None
    ) -> list[tuple[str, int | None]]:
        found: list[tuple[str, int | None]] = []
        for jid, job in self.workflow.jobs.items():
            if job_id is not None and jid != job_id:
                continue
            if workflow_file_name(job.uses) in targets:
                found.append((jid, None))
            found.extend(
                (jid, index)
                for index, step in enumerate(job.steps)
                if workflow_file_name(step.uses) in targets
            )
        return found

    def attach(self, key: str, child: TestingWorkflow, *, job_id: str | None = None) -> None:
        """Register ``child`` under ``key`` and redirect the call to it.

        Exactly one job or step of this node must call the child's logical
        workflow (or the file of the child previously attached under ``key``).
        Its ``uses`` is rewritten to :attr:`reference` of ``child``; every
        other field stays untouched.

        Parameters
        ----------
        key
            Name of the child among its siblings. Attaching under an existing
            key replaces the previous child.
        child
            Node created with :func:`new_child` for this node.
        job_id
            Restricts the search to one job when several call the same file.

        Raises
        ------
        LinkingError
            If no reference matches, several match, the child is already
            attached somewhere, or its correlation ID differs.
        """
        if child.parent is not None:
            msg = f"workflow {child.file_name} is already attached to {child.parent.file_name}"
            raise LinkingError(msg, node=self.file_name)
        if child.correlation_id != self.correlation_id:
            msg = (
                f"correlation id {child.correlation_id} of {child.base_name!r} "
                f"does not match {self.correlation_id}"
            )
            raise LinkingError(msg, node=self.file_name)

        previous = self._children.get(key)
        targets = {child.source}
        if previous is not None:
            targets.add(previous.file_name)

        calls = self._calls(targets, job_id)
        if not calls:
            msg = f"no job or step calls {child.source!r}, nothing to attach {key!r} to"
            raise LinkingError(msg, node=self.file_name, job_id=job_id)
        if len(calls) > 1:
            where = ", ".join(jid if index is None else f"{jid}[{index}]" for jid, index in calls)
            msg = f"{child.source!r} is called from several places ({where}); pass job_id"
            raise LinkingError(msg, node=self.file_name)

        jid, index = calls[0]
        job = self.workflow.jobs[jid]
        target = job if index is None else job.steps[index]
        logger.debug(
            "Rewriting %s job %s: %s -> %s", self.file_name, jid, target.uses, child.reference
        )
        target.uses = child.reference

        if previous is not None:
            previous.parent = None
        child.parent = self
        self._children[key] = child

    # Mutation

    def apply_uuid_suffix(self) -> None:
        """Append the correlation ID to every job name in the tree.

        Jobs without a name are named after the ID. Applying the suffix twice
        leaves names unchanged.
        """
        cid = self.correlation_id
        for node in self.walk():
            for job in node.workflow.jobs.values():
                if job.name == cid or job.name.endswith(f"-{cid}"):
                    continue
                job.name = f"{job.name}-{cid}" if job.name else cid

    def mock_all_steps_using_action(
        self,
        action: str,
        transform: StepTransform,
        *,
        recursive: bool = False,
        validate: bool = True,
    ) -> list[StepMatch]:
        """Replace every step using ``action`` with the result of ``transform``.

        Each replacement keeps the original ``id`` and ``if``. Unless
        ``validate`` is False, outputs of the replaced step still referenced
        later in its job must be declared by the replacement. Placeholders
        that a later option replaces again are mocked with ``validate=False``.

        Returns
        -------
        list[StepMatch]
            Locations of the replaced steps; empty when nothing matched.

        Raises
        ------
        MutationError
            If a transform rejects a step or breaks an output reference. The
            error names the node, job and step index involved.
        """
        matches = find_steps(self, action, recursive=recursive)
        for match in matches:
            job = match.job
            try:
                replacement = mock_step(match.step, transform)
                job.replace_step_at_index(match.step_index, replacement)
            except MutationError as exc:
                raise MutationError(
                    str(exc),
                    node=match.node.file_name,
                    job_id=match.job_id,
                    step_index=match.step_index,
                ) from exc
            if validate:
                validate_output_references(
                    job, match.step_index, node=match.node.file_name, job_id=match.job_id
                )
        if matches:
            logger.debug("Mocked %d step(s) using %s", len(matches), action)
        return matches


def new_root(
    name: str,
    document: Workflow,
    *,
    config: HarnessConfig | None = None,
    source: str | None = None,
) -> TestingWorkflow:
    """Wrap a copy of ``document`` as the root of a new composition tree.

    A fresh correlation ID is drawn from ``config.id_factory``.
    """
    config = config or HarnessConfig()
    return TestingWorkflow(
        base_name=name,
        workflow=document.copy(),
        correlation_id=config.new_correlation_id(),
        config=config,
        source=source or f"{name}.yml",
    )


def new_child(
    parent: TestingWorkflow,
    child_name: str,
    document: Workflow,
    *,
    source: str | None = None,
) -> TestingWorkflow:
    """Create a node sharing the correlation ID and config of ``parent``.

    The child is not linked; call :meth:`TestingWorkflow.attach` for that.
    ``source`` defaults to ``<child_name>.yml``.
    """
    return TestingWorkflow(
        base_name=child_name,
        workflow=document.copy(),
        correlation_id=parent.correlation_id,
        config=parent.config,
        source=source or f"{child_name}.yml",
    )
