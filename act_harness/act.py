"""Run composition trees with the ``act`` CLI and collect the results.

act is invoked with ``--json`` so every log line is a JSON object. Workflow
commands intercepted by act (``set-output``, annotations and step summaries)
are collected into a :class:`RunResult`.
"""

from __future__ import annotations

import collections.abc as cabc
import contextlib
import dataclasses
import enum
import json
import logging
import os
import re
import shutil
import socket
import subprocess
import sys
import tempfile
import threading
import typing as typ
from pathlib import Path

from plumbum import local
from plumbum.commands.processes import CommandNotFound, ProcessExecutionError

from .config import HarnessConfig
from .correlation import default_uuid7_generator, strip_correlation_suffix
from .errors import ActError, NotFoundError
from .files import create_event_file, remove_workflow_files, write_workflow_tree
from .options import RUN_ID_JOB, RUN_ID_STEP
from .storage import ARTIFACTS_BASE, ArtifactsStorage, MockGCS

if typ.TYPE_CHECKING:
    import types

    from .testing import TestingWorkflow

__all__ = [
    "ACTIONS_CACHE_BASE",
    "TEMPLATE_ACTIONS_CACHE_PATH",
    "Annotation",
    "AnnotationLevel",
    "Event",
    "EventKind",
    "Outputs",
    "RunResult",
    "Runner",
    "parse_logfmt",
]

logger = logging.getLogger(__name__)

ACTIONS_CACHE_BASE = Path("/tmp") / "act-actions-cache"  # noqa: S108
TEMPLATE_ACTIONS_CACHE_PATH = ACTIONS_CACHE_BASE / "template"

_LOGFMT_RE = re.compile(r'([^\s=]+)(?:=("(?:\\.|[^"\\])*"|\S*))?')


class EventKind(enum.StrEnum):
    """GitHub event names understood by act."""

    PUSH = "push"
    PULL_REQUEST = "pull_request"
    PULL_REQUEST_TARGET = "pull_request_target"
    WORKFLOW_DISPATCH = "workflow_dispatch"
    RELEASE = "release"


@dataclasses.dataclass(frozen=True, slots=True)
class Event:
    """Event that triggers a run: its kind, actor and payload."""

    kind: EventKind = EventKind.PUSH
    actor: str = ""
    payload: typ.Mapping[str, typ.Any] = dataclasses.field(default_factory=dict)


class AnnotationLevel(enum.StrEnum):
    """Level of a workflow annotation command."""

    DEBUG = "debug"
    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"


def parse_logfmt(text: str) -> dict[str, str]:
    """Parse a logfmt line into a mapping.

    Examples
    --------
    >>> parse_logfmt('plugin=my-app msg="hello world" dry')
    {'plugin': 'my-app', 'msg': 'hello world', 'dry': ''}
    """
    result: dict[str, str] = {}
    for match in _LOGFMT_RE.finditer(text):
        key, value = match.group(1), match.group(2) or ""
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):  # noqa: PLR2004
            value = re.sub(r"\\(.)", r"\1", value[1:-1])
        result[key] = value
    return result


@dataclasses.dataclass(frozen=True, slots=True)
class Annotation:
    """A ``::debug::``, ``::notice::``, ``::warning::`` or ``::error::`` command."""

    level: AnnotationLevel
    message: str
    title: str = ""

    def parse_logfmt_message(self) -> dict[str, str]:
        """Return the message parsed as logfmt key/value pairs."""
        return parse_logfmt(self.message)


class Outputs:
    """Step outputs of a run, keyed by job ID, step ID and output name."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, str]]] = {}

    def get(self, job_id: str, step_id: str, name: str) -> str | None:
        """Return an output value, or None when it was never set."""
        return self._data.get(job_id, {}).get(step_id, {}).get(name)

    def set(self, job_id: str, step_id: str, name: str, value: str) -> None:
        """Record an output value."""
        self._data.setdefault(job_id, {}).setdefault(step_id, {})[name] = value

    def as_dict(self) -> dict[str, dict[str, dict[str, str]]]:
        """Return a copy of every recorded output."""
        return {
            job: {step: dict(values) for step, values in steps.items()}
            for job, steps in self._data.items()
        }


@dataclasses.dataclass(slots=True)
class RunResult:
    """Outcome of one act run."""

    success: bool = False
    outputs: Outputs = dataclasses.field(default_factory=Outputs)
    annotations: list[Annotation] = dataclasses.field(default_factory=list)
    summary: list[str] = dataclasses.field(default_factory=list)

    def workflow_run_id(self) -> str:
        """Return the run ID emitted by the workflow run ID job.

        Raises
        ------
        NotFoundError
            If the tree was built without the run ID job.
        """
        run_id = self.outputs.get(RUN_ID_JOB, RUN_ID_STEP, RUN_ID_STEP)
        if run_id is None:
            msg = (
                "could not get workflow run id; build the tree with "
                "with_workflow_run_id_job() or a predefined tree"
            )
            raise NotFoundError(msg)
        return run_id

    def annotations_at(self, level: AnnotationLevel) -> list[Annotation]:
        """Return the annotations with ``level``."""
        return [a for a in self.annotations if a.level is level]


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("localhost", 0))
        return sock.getsockname()[1]


@dataclasses.dataclass(slots=True)
class Runner:
    """Runs composition trees through act.

    Attributes
    ----------
    config : HarnessConfig
        Paths, runner image and timeout.
    github_token : str
        Token for cloning actions; resolved lazily by :meth:`resolve_token`.
    concurrent_jobs : int
        ``--concurrent-jobs`` value; 0 lets act decide.
    container_architecture : str
        ``--container-architecture`` value, e.g. ``linux/amd64``.
    actions_cache_path : Path | None
        Action cache for this runner; defaults to a directory keyed by
        :attr:`run_id`, seeded from :data:`TEMPLATE_ACTIONS_CACHE_PATH`.
    gcs_path : Path | None
        Host directory mounted at ``/gcs`` for mocked uploads; a temporary
        directory is created when unset and removed by :meth:`close`.
    repo_root : Path
        Local checkout mapped to the base repository.
    run_id : str
        Identifier of this runner's artifact server path and cache.
    """

    config: HarnessConfig = dataclasses.field(default_factory=HarnessConfig)
    github_token: str = ""
    concurrent_jobs: int = 0
    container_architecture: str = ""
    actions_cache_path: Path | None = None
    gcs_path: Path | None = None
    repo_root: Path = dataclasses.field(default_factory=Path.cwd)
    run_id: str = dataclasses.field(default_factory=default_uuid7_generator)
    _owned_gcs_path: Path | None = dataclasses.field(
        default=None, init=False, repr=False
    )

    def __enter__(self) -> Runner:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: types.TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Remove the temporary mock GCS directory, if this runner created it."""
        if self._owned_gcs_path is not None:
            shutil.rmtree(self._owned_gcs_path, ignore_errors=True)
            if self.gcs_path == self._owned_gcs_path:
                self.gcs_path = None
            self._owned_gcs_path = None

    @property
    def artifacts(self) -> ArtifactsStorage:
        """Return the artifacts uploaded by runs of this runner."""
        return ArtifactsStorage(ARTIFACTS_BASE / self.run_id)

    @property
    def gcs(self) -> MockGCS:
        """Return the mock GCS bucket directory, creating it when unset."""
        return MockGCS(self._prepare_gcs())

    def _prepare_gcs(self) -> Path:
        if self.gcs_path is None:
            self.gcs_path = Path(tempfile.mkdtemp(prefix="act-gcs-"))
            self._owned_gcs_path = self.gcs_path
        return self.gcs_path

    def resolve_token(self) -> str:
        """Return the GitHub token from the runner, ``GITHUB_TOKEN`` or ``gh``.

        Raises
        ------
        ActError
            If no token is configured and ``gh auth token`` fails.
        """
        if self.github_token:
            return self.github_token
        token = os.environ.get("GITHUB_TOKEN", "").strip()
        if not token:
            try:
                token = local["gh"]["auth", "token"]().strip()
            except CommandNotFound as exc:
                msg = "GITHUB_TOKEN is not set and the gh executable was not found"
                raise ActError(msg) from exc
            except ProcessExecutionError as exc:
                msg = f"gh auth token failed with code {exc.retcode}: {exc.stderr.strip()}"
                raise ActError(msg) from exc
        self.github_token = token
        return token

    def local_repository_args(self) -> list[str]:
        """Return ``--local-repository`` flags mapping the base repository.

        The ``main`` branch is always mapped. When the checkout carries a
        release-please configuration, the current tag of every component is
        mapped as well.

        Raises
        ------
        ActError
            If a release-please file exists but cannot be decoded.
        """
        root = self.repo_root.resolve()
        repository = self.config.repository
        args: list[str] = []
        config_path = self.repo_root / "release-please-config.json"
        manifest_path = self.repo_root / ".release-please-manifest.json"
        if config_path.is_file() and manifest_path.is_file():
            try:
                packages = json.loads(config_path.read_text(encoding="utf-8")).get(
                    "packages", {}
                )
                manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
            except (OSError, ValueError, AttributeError) as exc:
                msg = f"cannot read release-please files: {exc}"
                raise ActError(msg) from exc
            for component, version in manifest.items():
                package = packages.get(component)
                if not isinstance(package, dict) or "package-name" not in package:
                    continue
                tag = f"{package['package-name']}/v{version}"
                args.append(f"--local-repository={repository}@{tag}={root}")
        args.append(f"--local-repository={repository}@{self.config.branch}={root}")
        return args

    def container_options(self, gcs_path: Path) -> str:
        """Return the ``--container-options`` value mounting mock data and GCS."""
        mockdata = (self.repo_root / self.config.mockdata_dir).resolve()
        options = [f"-v {mockdata}:/mockdata", f"-v {gcs_path}:/gcs"]
        if sys.platform.startswith("linux"):
            options.insert(0, "--add-host=host.docker.internal:host-gateway")
        return " ".join(options)

    def _prepare_cache(self) -> Path:
        if self.actions_cache_path is None:
            self.actions_cache_path = ACTIONS_CACHE_BASE / self.run_id
        if (
            self.actions_cache_path != TEMPLATE_ACTIONS_CACHE_PATH
            and TEMPLATE_ACTIONS_CACHE_PATH.is_dir()
        ):
            shutil.copytree(
                TEMPLATE_ACTIONS_CACHE_PATH, self.actions_cache_path, dirs_exist_ok=True
            )
        return self.actions_cache_path

    def args(
        self,
        event: Event,
        workflow_file: Path,
        payload_file: Path,
        *,
        artifact_port: int,
        gcs_path: Path,
        cache_path: Path,
    ) -> list[str]:
        """Return the act command line for one run."""
        args = [
            str(event.kind),
            "-W",
            str(workflow_file),
            "-e",
            str(payload_file),
            "--rm",
            "--json",
            f"--artifact-server-port={artifact_port}",
            f"--artifact-server-path={self.artifacts.base_path}/",
            "--secret",
            f"GITHUB_TOKEN={self.resolve_token()}",
            "--container-options",
            self.container_options(gcs_path),
            "--action-cache-path",
            str(cache_path),
            *self.local_repository_args(),
        ]
        if event.actor:
            args += ["--actor", event.actor]
        if self.concurrent_jobs > 0:
            args += ["--concurrent-jobs", str(self.concurrent_jobs)]
        if self.container_architecture:
            args += ["--container-architecture", self.container_architecture]
        for label in self.config.runner_labels:
            args += ["-P", f"{label}={self.config.runner_image}"]
        return args

    def process_stream(
        self, lines: cabc.Iterable[str], result: RunResult | None = None
    ) -> RunResult:
        """Parse act JSON log ``lines`` into ``result``.

        Lines that are not JSON objects are skipped.
        """
        result = result or RunResult()
        for line in lines:
            if self.config.verbose:
                logger.debug("act: %s", line.rstrip())
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(data, dict):
                continue
            job = strip_correlation_suffix(str(data.get("job", "")))
            message = str(data.get("msg", "")).strip()
            if message:
                logger.info("[%s] %s", job, message)
            self._handle_command(data, job, result)
        return result

    def _handle_command(
        self, data: dict[str, typ.Any], job: str, result: RunResult
    ) -> None:
        command = data.get("command") or ""
        # Custom command used by workflows to emit debug annotations on demand.
        if command == "act-debug":
            command = "debug"
        match command:
            case "set-output":
                name = data.get("name") or ""
                if not name:
                    logger.warning("[%s] set-output command without name, ignoring", job)
                    return
                step_ids = data.get("stepID") or [""]
                result.outputs.set(
                    str(data.get("jobID", "")), str(step_ids[0]), name, str(data.get("arg", ""))
                )
            case "debug" | "notice" | "warning" | "error":
                kv_pairs = data.get("kvPairs") or {}
                result.annotations.append(
                    Annotation(
                        level=AnnotationLevel(command),
                        message=str(data.get("arg", "")),
                        title=str(kv_pairs.get("title", "")),
                    )
                )
            case "summary":
                result.summary.append(str(data.get("content", "")))
            case "":
                pass
            case _:
                logger.debug("[%s] unhandled workflow command %r", job, command)

    def _execute(self, args: list[str]) -> RunResult:
        try:
            act = local["act"]
        except CommandNotFound as exc:
            msg = "act executable not found"
            raise ActError(msg) from exc
        logger.info("Running act %s", " ".join(args[:3]))
        proc = act[args].popen(
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=None,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        timed_out = threading.Event()

        def _kill() -> None:
            timed_out.set()
            with contextlib.suppress(ProcessLookupError):
                proc.kill()

        timer = threading.Timer(self.config.act_timeout, _kill)
        timer.start()
        try:
            result = self.process_stream(proc.stdout)
        finally:
            timer.cancel()
            proc.stdout.close()
            retcode = proc.wait()
        if timed_out.is_set():
            msg = f"act timed out after {self.config.act_timeout}s"
            raise ActError(msg)
        result.success = retcode == 0
        logger.info("act finished with code %d", retcode)
        return result

    def run(self, root: TestingWorkflow, event: Event | None = None) -> RunResult:
        """Write the tree rooted at ``root``, run it with act and clean up.

        A failing workflow yields ``success=False``; only problems launching
        act raise.

        Raises
        ------
        ActError
            If act or the GitHub token cannot be found, the workflows
            directory lies outside :attr:`repo_root`, or act times out.
        """
        event = event or Event()
        workflows_dir = self.repo_root / self.config.workflows_dir
        if not workflows_dir.resolve().is_relative_to(self.repo_root.resolve()):
            msg = (
                f"workflows directory {workflows_dir} is outside the repository "
                f"{self.repo_root}; act only resolves workflows inside it"
            )
            raise ActError(msg)
        gcs_path = self._prepare_gcs()
        written = write_workflow_tree(root, workflows_dir)
        payload_file = create_event_file(event.payload)
        try:
            args = self.args(
                event,
                written[0].resolve().relative_to(self.repo_root.resolve()),
                payload_file,
                artifact_port=_free_port(),
                gcs_path=gcs_path,
                cache_path=self._prepare_cache(),
            )
            with local.cwd(self.repo_root):
                return self._execute(args)
        finally:
            payload_file.unlink(missing_ok=True)
            remove_workflow_files(written)
