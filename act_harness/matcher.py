"""Locate steps that invoke a given action inside a composition tree."""

from __future__ import annotations

import dataclasses
import typing as typ

from .references import matches_action

if typ.TYPE_CHECKING:
    from .document import Job, Step
    from .testing import TestingWorkflow

__all__ = ["StepMatch", "find_steps"]


@dataclasses.dataclass(frozen=True, slots=True)
class StepMatch:
    """Location of a matched step: owning node, job id and step index."""

    node: TestingWorkflow
    job_id: str
    step_index: int

    @property
    def job(self) -> Job:
        """Return the job holding the matched step."""
        return self.node.workflow.jobs[self.job_id]

    @property
    def step(self) -> Step:
        """Return the matched step."""
        return self.job.steps[self.step_index]


def find_steps(
    root: TestingWorkflow, action_ref: str, *, recursive: bool = False
) -> list[StepMatch]:
    """Return every step under ``root`` whose ``uses`` names ``action_ref``.

    Parameters
    ----------
    root
        Node to search.
    action_ref
        Action to look for. The version pin of each step is ignored unless
        ``action_ref`` carries one itself.
    recursive
        Also search every descendant, depth-first with parents before
        children.

    Returns
    -------
    list[StepMatch]
        Matches in tree order, then job order, then step order. Sibling steps
        using the same action with different pins are all returned. The list
        is empty when nothing matches.
    """
    nodes = root.walk() if recursive else (root,)
    return [
        StepMatch(node=node, job_id=job_id, step_index=index)
        for node in nodes
        for job_id, job in node.workflow.jobs.items()
        for index, step in enumerate(job.steps)
        if matches_action(step.uses, action_ref)
    ]
