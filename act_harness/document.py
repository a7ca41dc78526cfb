"""In-memory model of GitHub Actions workflow documents.

The model keeps the fields the harness reads or rewrites as attributes and
carries every other key in an ``extra`` mapping, so a document that is parsed
and serialised without modification stays semantically identical. Field bags
such as ``with`` and ``env`` are plain insertion-ordered dictionaries whose
values are strings, booleans or numbers; template expressions are strings
recognised by :func:`is_expression`.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import re
import typing as typ
from pathlib import Path

import yaml

from .errors import MutationError, ParseError

__all__ = [
    "InputValue",
    "Job",
    "Step",
    "Workflow",
    "commands",
    "is_expression",
    "load_workflow",
    "parse_workflow",
    "serialize_workflow",
    "set_job_input",
]

logger = logging.getLogger(__name__)

InputValue: typ.TypeAlias = str | bool | int | float

_EXPRESSION_RE = re.compile(r"\$\{\{.*?\}\}", re.DOTALL)

# (attribute, YAML key) pairs in serialisation order.
_STEP_FIELDS: tuple[tuple[str, str], ...] = (
    ("name", "name"),
    ("id", "id"),
    ("if_", "if"),
    ("uses", "uses"),
    ("with_", "with"),
    ("run", "run"),
    ("shell", "shell"),
    ("working_directory", "working-directory"),
    ("env", "env"),
)
_JOB_FIELDS: tuple[tuple[str, str], ...] = (
    ("name", "name"),
    ("if_", "if"),
    ("runs_on", "runs-on"),
    ("needs", "needs"),
    ("outputs", "outputs"),
    ("permissions", "permissions"),
    ("uses", "uses"),
    ("with_", "with"),
    ("secrets", "secrets"),
)
_WORKFLOW_FIELDS: tuple[tuple[str, str], ...] = (
    ("name", "name"),
    ("on", "on"),
    ("permissions", "permissions"),
    ("env", "env"),
)


def is_expression(value: object) -> bool:
    """Return True when ``value`` is a string containing a ``${{ ... }}`` expression.

    Examples
    --------
    >>> is_expression("${{ inputs.branch }}")
    True
    >>> is_expression("main")
    False
    """
    return isinstance(value, str) and _EXPRESSION_RE.search(value) is not None


def commands(*lines: str) -> str:
    """Join shell ``lines`` into a single ``run`` script."""
    return "\n".join(lines)


# An empty mapping here is meaningful: `permissions: {}` revokes every scope.
_NULLABLE_FIELDS = frozenset({"permissions", "secrets"})


def _is_empty(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (dict, list, tuple)):
        return not value
    return False


def _dump_fields(
    obj: object, fields: tuple[tuple[str, str], ...]
) -> dict[str, typ.Any]:
    data: dict[str, typ.Any] = {}
    for attr, key in fields:
        value = getattr(obj, attr)
        if attr in _NULLABLE_FIELDS:
            if value is not None:
                data[key] = value
        elif not _is_empty(value):
            data[key] = value
    return data


def _scalar(raw: dict[str, typ.Any], key: str, where: str, path: str | None) -> str:
    """Return ``raw[key]`` as a string; absent and null values become ``""``.

    YAML reads ``name: 2024`` as an int and ``if: false`` as a bool, both of
    which GitHub Actions treats as text.
    """
    value = raw.get(key)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    msg = f"{where}.{key} must be a scalar, got {type(value).__name__}"
    raise ParseError(msg, path=path)


def _mapping(value: object, what: str, path: str | None) -> dict[str, typ.Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        msg = f"{what} must be a mapping, got {type(value).__name__}"
        raise ParseError(msg, path=path)
    return {str(key): item for key, item in value.items()}


@dataclasses.dataclass(slots=True)
class Step:
    """A single step of a job: either an action call (``uses``) or a ``run`` script."""

    name: str = ""
    id: str = ""
    if_: str = ""
    uses: str = ""
    with_: dict[str, typ.Any] = dataclasses.field(default_factory=dict)
    run: str = ""
    shell: str = ""
    working_directory: str = ""
    env: dict[str, typ.Any] = dataclasses.field(default_factory=dict)
    extra: dict[str, typ.Any] = dataclasses.field(default_factory=dict)

    @property
    def is_action(self) -> bool:
        """Return True when the step invokes an action."""
        return bool(self.uses)

    @property
    def label(self) -> str:
        """Return the step name, falling back to its id or ``uses`` reference."""
        return self.name or self.id or self.uses or "<unnamed step>"

    def copy(self) -> Step:
        """Return an independent deep copy of the step."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, typ.Any]:
        """Return the YAML mapping representation of the step."""
        return _dump_fields(self, _STEP_FIELDS) | self.extra

    @classmethod
    def from_dict(
        cls, data: object, *, where: str, path: str | None = None
    ) -> Step:
        """Build a step from its YAML mapping.

        Raises
        ------
        ParseError
            If ``data`` is not a mapping or declares both ``uses`` and ``run``.
        """
        raw = _mapping(data, where, path)
        if not raw and data is None:
            msg = f"{where} is empty"
            raise ParseError(msg, path=path)
        if "uses" in raw and "run" in raw:
            msg = f"{where} declares both 'uses' and 'run'"
            raise ParseError(msg, path=path)
        known = {key for _, key in _STEP_FIELDS}
        return cls(
            name=_scalar(raw, "name", where, path),
            id=_scalar(raw, "id", where, path),
            if_=_scalar(raw, "if", where, path),
            uses=_scalar(raw, "uses", where, path),
            with_=_mapping(raw.get("with"), f"{where}.with", path),
            run=_scalar(raw, "run", where, path),
            shell=_scalar(raw, "shell", where, path),
            working_directory=_scalar(raw, "working-directory", where, path),
            env=_mapping(raw.get("env"), f"{where}.env", path),
            extra={key: value for key, value in raw.items() if key not in known},
        )


@dataclasses.dataclass(slots=True)
class Job:
    """A job: either a reusable-workflow call (``uses``) or a list of steps."""

    name: str = ""
    if_: str = ""
    runs_on: typ.Any = ""
    needs: list[str] = dataclasses.field(default_factory=list)
    outputs: dict[str, typ.Any] = dataclasses.field(default_factory=dict)
    permissions: dict[str, str] | str | None = None
    uses: str = ""
    with_: dict[str, typ.Any] = dataclasses.field(default_factory=dict)
    secrets: dict[str, typ.Any] | str | None = None
    steps: list[Step] = dataclasses.field(default_factory=list)
    extra: dict[str, typ.Any] = dataclasses.field(default_factory=dict)

    def copy(self) -> Job:
        """Return an independent deep copy of the job."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, typ.Any]:
        """Return the YAML mapping representation of the job."""
        data = _dump_fields(self, _JOB_FIELDS) | self.extra
        if self.steps:
            data["steps"] = [step.to_dict() for step in self.steps]
        return data

    @classmethod
    def from_dict(cls, job_id: str, data: object, *, path: str | None = None) -> Job:
        """Build a job from its YAML mapping.

        Raises
        ------
        ParseError
            If the job is not a mapping, mixes ``uses`` with ``steps``, or has
            malformed ``needs`` or ``steps`` entries.
        """
        where = f"jobs.{job_id}"
        if not isinstance(data, dict):
            msg = f"{where} must be a mapping, got {type(data).__name__}"
            raise ParseError(msg, path=path)
        raw = _mapping(data, where, path)
        if "uses" in raw and "steps" in raw:
            msg = f"{where} declares both 'uses' and 'steps'"
            raise ParseError(msg, path=path)

        steps_raw = raw.get("steps") or []
        if not isinstance(steps_raw, list):
            msg = f"{where}.steps must be a list, got {type(steps_raw).__name__}"
            raise ParseError(msg, path=path)
        steps = [
            Step.from_dict(item, where=f"{where}.steps[{index}]", path=path)
            for index, item in enumerate(steps_raw)
        ]

        permissions = raw.get("permissions")
        if isinstance(permissions, dict):
            permissions = _mapping(permissions, f"{where}.permissions", path)
        secrets = raw.get("secrets")
        if isinstance(secrets, dict):
            secrets = _mapping(secrets, f"{where}.secrets", path)

        known = {key for _, key in _JOB_FIELDS} | {"steps"}
        return cls(
            name=_scalar(raw, "name", where, path),
            if_=_scalar(raw, "if", where, path),
            runs_on=raw.get("runs-on", ""),
            needs=_needs(raw.get("needs"), where, path),
            outputs=_mapping(raw.get("outputs"), f"{where}.outputs", path),
            permissions=permissions,
            uses=_scalar(raw, "uses", where, path),
            with_=_mapping(raw.get("with"), f"{where}.with", path),
            secrets=secrets,
            steps=steps,
            extra={key: value for key, value in raw.items() if key not in known},
        )

    # Step editing

    def step_index(self, step_id: str) -> int:
        """Return the index of the step with ``step_id``, or -1 when absent."""
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return -1

    def get_step(self, step_id: str) -> Step | None:
        """Return the step with ``step_id``, or None when absent."""
        index = self.step_index(step_id)
        return None if index == -1 else self.steps[index]

    def _require_index(self, step_id: str) -> int:
        index = self.step_index(step_id)
        if index == -1:
            msg = f"step with id {step_id!r} not found"
            raise MutationError(msg)
        return index

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= len(self.steps):
            msg = f"step index {index} out of range"
            raise MutationError(msg)

    def replace_step_at_index(self, index: int, *steps: Step) -> None:
        """Replace the step at ``index`` with ``steps``, in place.

        The original ``if`` condition is applied to every new step and the
        original ``id`` is kept on the first one, so conditions and output
        references elsewhere in the workflow keep working.

        Raises
        ------
        MutationError
            If no steps are given or ``index`` is out of range.
        """
        if not steps:
            msg = "no steps provided to replace"
            raise MutationError(msg)
        self._check_index(index)
        original = self.steps[index]
        replacements = [step.copy() for step in steps]
        if original.if_:
            for step in replacements:
                step.if_ = original.if_
        if original.id:
            replacements[0].id = original.id
        self.steps[index : index + 1] = replacements

    def replace_step(self, step_id: str, *steps: Step) -> None:
        """Replace the step with ``step_id``; see :meth:`replace_step_at_index`."""
        self.replace_step_at_index(self._require_index(step_id), *steps)

    def remove_step_at_index(self, index: int) -> None:
        """Remove the step at ``index``.

        Steps that read outputs of the removed step will fail at run time.
        """
        self._check_index(index)
        del self.steps[index]

    def remove_step(self, step_id: str) -> None:
        """Remove the step with ``step_id``."""
        self.remove_step_at_index(self._require_index(step_id))

    def remove_all_steps_after(self, step_id: str) -> None:
        """Drop every step after ``step_id``, keeping ``step_id`` itself."""
        index = self._require_index(step_id)
        del self.steps[index + 1 :]

    def inject_steps(
        self,
        steps: typ.Sequence[Step],
        *,
        after: bool = False,
        step_id: str | None = None,
        index: int | None = None,
    ) -> None:
        """Insert ``steps`` before (or ``after``) an anchor step.

        The anchor is given either by ``step_id`` or by ``index``; a negative
        ``index`` counts from the end, so ``-1`` is the last step.

        Raises
        ------
        MutationError
            If no steps are given, both or neither anchors are given, or the
            anchor does not exist.
        """
        if not steps:
            msg = "no steps provided to inject"
            raise MutationError(msg)
        if (step_id is None) == (index is None):
            msg = "exactly one of step_id or index must be given"
            raise MutationError(msg)
        if step_id is not None:
            anchor = self._require_index(step_id)
        else:
            anchor = typ.cast("int", index)
            if anchor < 0:
                anchor += len(self.steps)
            self._check_index(anchor)
        position = anchor + 1 if after else anchor
        self.steps[position:position] = [step.copy() for step in steps]


def _needs(value: object, where: str, path: str | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return list(value)
    msg = f"{where}.needs must be a string or a list of strings"
    raise ParseError(msg, path=path)


def set_job_input(job: Job, key: str, value: InputValue | None) -> None:
    """Set the ``with`` input ``key`` of ``job`` unless ``value`` is None."""
    if value is not None:
        job.with_[key] = value


@dataclasses.dataclass(slots=True)
class Workflow:
    """A workflow definition: triggers, permissions, env and jobs."""

    name: str = ""
    on: dict[str, typ.Any] = dataclasses.field(default_factory=dict)
    permissions: dict[str, str] | str | None = None
    env: dict[str, typ.Any] = dataclasses.field(default_factory=dict)
    jobs: dict[str, Job] = dataclasses.field(default_factory=dict)
    extra: dict[str, typ.Any] = dataclasses.field(default_factory=dict)

    def copy(self) -> Workflow:
        """Return an independent deep copy of the workflow."""
        return copy.deepcopy(self)

    def get_job(self, job_id: str) -> Job | None:
        """Return the job with ``job_id``, or None when absent."""
        return self.jobs.get(job_id)

    def set_trigger(self, event: str, config: dict[str, typ.Any] | None = None) -> None:
        """Add or replace the trigger for ``event``."""
        self.on[event] = config

    def to_dict(self) -> dict[str, typ.Any]:
        """Return the YAML mapping representation of the workflow."""
        data = _dump_fields(self, _WORKFLOW_FIELDS) | self.extra
        data["jobs"] = {job_id: job.to_dict() for job_id, job in self.jobs.items()}
        return data

    @classmethod
    def from_dict(cls, data: object, *, path: str | None = None) -> Workflow:
        """Build a workflow from a parsed YAML document.

        Raises
        ------
        ParseError
            If the document, its triggers or its jobs are malformed.
        """
        if not isinstance(data, dict):
            msg = f"expected a YAML mapping, got {type(data).__name__}"
            raise ParseError(msg, path=path)
        raw = dict(data)
        # PyYAML parses a bare `on:` key as boolean True
        if True in raw:
            raw["on"] = raw.pop(True)
        raw = {str(key): value for key, value in raw.items()}

        jobs_raw = raw.get("jobs")
        if not isinstance(jobs_raw, dict):
            msg = "no 'jobs' mapping found"
            raise ParseError(msg, path=path)

        permissions = raw.get("permissions")
        if isinstance(permissions, dict):
            permissions = _mapping(permissions, "permissions", path)

        known = {key for _, key in _WORKFLOW_FIELDS} | {"jobs"}
        return cls(
            name=_scalar(raw, "name", "workflow", path),
            on=_triggers(raw["on"], path) if "on" in raw else {},
            permissions=permissions,
            env=_mapping(raw.get("env"), "env", path),
            jobs={
                str(job_id): Job.from_dict(str(job_id), job, path=path)
                for job_id, job in jobs_raw.items()
            },
            extra={key: value for key, value in raw.items() if key not in known},
        )


def _triggers(value: object, path: str | None) -> dict[str, typ.Any]:
    if isinstance(value, str) and value:
        return {value: None}
    if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
        return dict.fromkeys(value)
    if isinstance(value, dict) and value:
        return {str(event): config for event, config in value.items()}
    msg = "'on' must be an event name, a list of event names or a mapping of events"
    raise ParseError(msg, path=path)


def parse_workflow(text: str, *, path: str | None = None) -> Workflow:
    """Parse workflow YAML ``text`` into a :class:`Workflow`.

    Parameters
    ----------
    text
        Raw YAML document.
    path
        Optional source path, used only in error messages.

    Raises
    ------
    ParseError
        If the YAML is invalid or the document structure is malformed.
    """
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        msg = f"invalid YAML syntax: {exc}"
        raise ParseError(msg, path=path) from exc
    return Workflow.from_dict(raw, path=path)


def load_workflow(path: Path | str) -> Workflow:
    """Read and parse the workflow file at ``path``.

    Raises
    ------
    ParseError
        If the file cannot be read or does not hold a valid workflow.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"cannot read workflow file: {exc.strerror or exc}"
        raise ParseError(msg, path=path.as_posix()) from exc
    logger.debug("Loaded workflow definition from %s", path)
    return parse_workflow(text, path=path.as_posix())


class _WorkflowDumper(yaml.SafeDumper):
    """Safe dumper emitting multi-line strings as literal blocks, without anchors."""

    def ignore_aliases(self, data: object) -> bool:
        return True


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_WorkflowDumper.add_representer(str, _represent_str)


def serialize_workflow(workflow: Workflow) -> str:
    """Serialise ``workflow`` to YAML text.

    Key order follows the model, jobs keep their insertion order, and unknown
    keys are emitted unchanged. Parsing the output yields an equal document.
    """
    return yaml.dump(
        workflow.to_dict(),
        Dumper=_WorkflowDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=4096,
    )
