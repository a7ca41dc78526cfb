"""Deterministic stand-ins for steps that would reach external services.

A :data:`StepTransform` maps a matched step to its replacement. The stock
transforms below mirror the outputs of the real actions they replace, so
later steps that read those outputs keep working without network access.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import re
import shlex
import typing as typ

from .config import coerce_bool
from .document import Job, Step, commands, is_expression
from .errors import MutationError
from .references import matches_action

__all__ = [
    "ARGO_WORKFLOW_ACTION",
    "GCS_LOGIN_ACTION",
    "GCS_UPLOAD_ACTION",
    "GITHUB_APP_TOKEN_ACTION",
    "MOCK_ARGO_WORKFLOW_URI",
    "MOCK_GITHUB_APP_TOKEN",
    "VAULT_SECRETS_ACTION",
    "StepTransform",
    "VaultSecrets",
    "copy_mock_files_step",
    "declared_outputs",
    "mock_argo_workflow_step",
    "mock_gcs_upload_step",
    "mock_github_app_token_step",
    "mock_http_spy_step",
    "mock_secrets_step",
    "mock_step",
    "mock_vault_secrets_step",
    "no_op_step",
    "output_references",
    "validate_output_references",
]

logger = logging.getLogger(__name__)

GCS_LOGIN_ACTION = "google-github-actions/auth"
GCS_UPLOAD_ACTION = "google-github-actions/upload-cloud-storage"
VAULT_SECRETS_ACTION = "grafana/shared-workflows/actions/get-vault-secrets"
ARGO_WORKFLOW_ACTION = "grafana/shared-workflows/actions/trigger-argo-workflow"
GITHUB_APP_TOKEN_ACTION = "actions/create-github-app-token"

MOCK_ARGO_WORKFLOW_URI = (
    "https://mock-argo-workflows.example.com/workflows/grafana-plugins-cd/mock-workflow-id"
)
MOCK_GITHUB_APP_TOKEN = "MOCK_GITHUB_APP_TOKEN"  # noqa: S105

StepTransform: typ.TypeAlias = typ.Callable[[Step], Step]

_OUTPUT_WRITE_RE = re.compile(
    r"""^\s*echo\s+(?P<arg>.+?)\s*>>\s*"?\$(?:\{GITHUB_OUTPUT\}|GITHUB_OUTPUT)"?\s*$"""
)
_OUTPUT_NAME_RE = re.compile(r"^(?P<name>[A-Za-z0-9_-]+)(?:=|<<)")
_OUTPUT_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_OUTPUT_REF_RE = re.compile(
    r"steps\.(?P<step>[A-Za-z0-9_-]+)\.outputs"
    r"""(?:\.(?P<dotted>[A-Za-z0-9_-]+)|\[\s*['"](?P<quoted>[^'"]+)['"]\s*\])"""
)


def mock_step(step: Step, transform: StepTransform) -> Step:
    """Return the replacement ``transform`` produces for ``step``.

    Raises
    ------
    MutationError
        If ``step`` has no ``uses`` reference, or the transform rejects it.
    """
    if not step.uses:
        msg = f"step {step.label!r} has no 'uses' reference to mock"
        raise MutationError(msg)
    replacement = transform(step)
    logger.debug("Mocked step %r (%s) as %r", step.label, step.uses, replacement.label)
    return replacement


def declared_outputs(step: Step) -> dict[str, str] | None:
    """Return the outputs a ``run`` step writes to ``$GITHUB_OUTPUT``.

    Only ``echo`` lines redirected to ``$GITHUB_OUTPUT`` are recognised.
    Returns None when the outputs cannot be known, e.g. for a step that
    invokes an action.

    Examples
    --------
    >>> declared_outputs(Step(run='echo "uri=https://x" >> "$GITHUB_OUTPUT"'))
    {'uri': 'https://x'}
    """
    if step.uses or not isinstance(step.run, str):
        return None
    outputs: dict[str, str] = {}
    for line in step.run.splitlines():
        match = _OUTPUT_WRITE_RE.match(line)
        if match is None:
            continue
        arg = match["arg"]
        try:
            text = " ".join(shlex.split(arg))
        except ValueError:
            text = arg.strip("\"'")
        name_match = _OUTPUT_NAME_RE.match(text)
        if name_match is None:
            continue
        name = name_match["name"]
        _, _, value = text.partition("=")
        outputs[name] = value
    return outputs


def output_references(value: object) -> set[tuple[str, str]]:
    """Return every ``(step_id, output)`` pair referenced inside ``value``.

    Nested dictionaries and lists are searched recursively.

    Examples
    --------
    >>> sorted(output_references({"a": "${{ steps.vault.outputs.TOKEN }}"}))
    [('vault', 'TOKEN')]
    """
    refs: set[tuple[str, str]] = set()
    if isinstance(value, str):
        for match in _OUTPUT_REF_RE.finditer(value):
            refs.add((match["step"], match["dotted"] or match["quoted"]))
    elif isinstance(value, dict):
        for item in value.values():
            refs |= output_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            refs |= output_references(item)
    return refs


def validate_output_references(
    job: Job,
    index: int,
    *,
    node: str | None = None,
    job_id: str | None = None,
) -> None:
    """Check that outputs still referenced after step ``index`` are declared.

    Later steps of ``job`` and the job's own ``outputs`` are searched for
    ``steps.<id>.outputs.<name>`` references to the step at ``index``.

    Raises
    ------
    MutationError
        If a referenced output is not declared by the step any more.
    """
    step = job.steps[index]
    if not step.id:
        return
    declared = declared_outputs(step)
    if declared is None:
        return
    later: list[object] = [later_step.to_dict() for later_step in job.steps[index + 1 :]]
    later.append(job.outputs)
    missing = sorted(
        name
        for step_id, name in output_references(later)
        if step_id == step.id and name not in declared
    )
    if missing:
        msg = (
            f"replacement for step {step.id!r} no longer declares output(s) "
            f"{', '.join(missing)} referenced later in the job"
        )
        raise MutationError(msg, node=node, job_id=job_id, step_index=index)


def _require_action(step: Step, action: str, what: str) -> None:
    if not matches_action(step.uses, action):
        msg = (
            f"cannot mock {what} for a step that uses {step.uses!r} action, "
            f"must be {action!r}"
        )
        raise MutationError(msg)


def _mocked_name(step: Step) -> str:
    return f"{step.name or step.id or step.uses} (mocked)"


def _output_line(name: str, value: str, target: str = "GITHUB_OUTPUT") -> str:
    return f'echo {shlex.quote(f"{name}={value}")} >> "${target}"'


def copy_mock_files_step(source: str, dest: str) -> Step:
    """Return a step copying ``/mockdata/<source>`` into ``dest``.

    ``dest`` may contain expressions such as ``${{ github.workspace }}``.
    """
    return Step(
        name="Copy mock files",
        run=commands(
            "set -x",
            f"mkdir -p {dest}",
            f"cp -r /mockdata/{source}/. {dest}",
            f"cd {dest}",
            "ls -la",
        ),
        shell="bash",
    )


def no_op_step(step: Step) -> Step:
    """Return a step that keeps the id of ``step`` but does nothing."""
    return Step(
        name=f"{step.name or step.id} (no-opp'ed for testing)",
        id=step.id,
        run="echo 'noop-ed step for testing'",
        shell="bash",
    )


def mock_secrets_step(step: Step, secrets: typ.Mapping[str, str]) -> Step:
    """Return a step whose outputs are exactly the keys of ``secrets``.

    Examples
    --------
    >>> mocked = mock_secrets_step(Step(id="s", uses="org/secrets@v1"), {"TOKEN": "t"})
    >>> declared_outputs(mocked)
    {'TOKEN': 't'}
    """
    return Step(
        name=_mocked_name(step),
        id=step.id,
        run=commands(*(_output_line(key, value) for key, value in secrets.items())),
        shell="bash",
    )


@dataclasses.dataclass(frozen=True, slots=True)
class VaultSecrets:
    """Values returned by a mocked ``get-vault-secrets`` step.

    Keys are secret references (the right-hand side of each
    ``NAME=path:key`` line of the ``common_secrets`` or ``repo_secrets``
    input). ``default_value`` is used for references missing from the maps;
    when it is None a missing reference is an error.
    """

    common_secrets: typ.Mapping[str, str] = dataclasses.field(default_factory=dict)
    repo_secrets: typ.Mapping[str, str] = dataclasses.field(default_factory=dict)
    default_value: str | None = None


def _export_env(step: Step) -> bool:
    value = step.with_.get("export_env", True)
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and not is_expression(value):
        try:
            return coerce_bool(value, default=True, parameter="export_env")
        except ValueError as exc:
            raise MutationError(str(exc)) from exc
    return True


def _vault_output(step: Step, secrets: VaultSecrets) -> dict[str, str]:
    output: dict[str, str] = {}
    for key, values in (
        ("common_secrets", secrets.common_secrets),
        ("repo_secrets", secrets.repo_secrets),
    ):
        lines = step.with_.get(key, "")
        if not isinstance(lines, str):
            continue
        for number, raw in enumerate(lines.splitlines()):
            line = raw.strip()
            if not line:
                continue
            parts = line.split("=")
            if len(parts) != 2:  # noqa: PLR2004
                msg = f"invalid {key} input, expected NAME=reference on line {number}: {line}"
                raise MutationError(msg)
            name, reference = (part.strip() for part in parts)
            if reference in values:
                output[name] = values[reference]
            elif secrets.default_value is not None:
                output[name] = secrets.default_value
            else:
                msg = f"secret reference {reference!r} not found in provided mock secrets"
                raise MutationError(msg)
    return output


def mock_vault_secrets_step(step: Step, secrets: VaultSecrets) -> Step:
    """Return a stand-in for the ``get-vault-secrets`` action.

    With ``export_env`` enabled (the action's default) each secret is written
    to ``$GITHUB_ENV``. Otherwise the secrets are emitted as a JSON object in
    the ``secrets`` output.

    Raises
    ------
    MutationError
        If ``step`` does not use the Vault action, an input line is
        malformed, or a reference is missing and no default is configured.
    """
    _require_action(step, VAULT_SECRETS_ACTION, "vault secrets")
    output = _vault_output(step, secrets)
    mocked = Step(name=_mocked_name(step), id=step.id, shell="bash")
    if _export_env(step):
        mocked.run = commands(
            *(_output_line(key, output[key], "GITHUB_ENV") for key in sorted(output))
        )
    else:
        mocked.run = 'echo "secrets=${SECRETS_JSON}" >> "$GITHUB_OUTPUT"'
        mocked.env = {"SECRETS_JSON": json.dumps(output, sort_keys=True)}
    return mocked


def mock_argo_workflow_step(step: Step) -> Step:
    """Return a stand-in for ``trigger-argo-workflow`` with a fixed ``uri`` output."""
    _require_action(step, ARGO_WORKFLOW_ACTION, "argo workflow")
    return Step(
        name=_mocked_name(step),
        id=step.id,
        run=commands(
            'echo "Mocking Argo Workflow trigger step"',
            f'echo "uri={MOCK_ARGO_WORKFLOW_URI}" >> "$GITHUB_OUTPUT"',
        ),
        shell="bash",
    )


def mock_github_app_token_step(step: Step, token: str = MOCK_GITHUB_APP_TOKEN) -> Step:
    """Return a stand-in for ``create-github-app-token`` emitting ``token``."""
    _require_action(step, GITHUB_APP_TOKEN_ACTION, "github app token")
    return Step(
        name=_mocked_name(step),
        id=step.id,
        run=commands(
            'echo "Mocking GitHub app token step"',
            'echo "token=${MOCK_TOKEN}" >> "$GITHUB_OUTPUT"',
        ),
        shell="bash",
        env={"MOCK_TOKEN": token},
    )


def mock_gcs_upload_step(step: Step) -> Step:
    """Return a stand-in for ``upload-cloud-storage`` that copies into ``/gcs``.

    The mock bucket is a local folder mounted into the act container. The
    ``uploaded`` output lists the copied files relative to the bucket.

    Raises
    ------
    MutationError
        If ``step`` does not use the upload action or lacks string ``path``
        and ``destination`` inputs.
    """
    _require_action(step, GCS_UPLOAD_ACTION, "gcs")
    src_path = step.with_.get("path")
    dest_path = step.with_.get("destination")
    if not (isinstance(src_path, str) and src_path) or not (
        isinstance(dest_path, str) and dest_path
    ):
        msg = f"could not mock gcs step {step.label!r} because its inputs are not valid"
        raise MutationError(msg)
    return Step(
        name=_mocked_name(step),
        id=step.id,
        run=commands(
            "set -x",
            "mkdir -p /gcs/${DEST_PATH}",
            'if [ -f "${SRC_PATH}" ]; then',
            '  cp "${SRC_PATH}" /gcs/${DEST_PATH}/',
            '  filename=$(basename "${SRC_PATH}")',
            '  files="${DEST_PATH}/${filename}"',
            "  files=$(echo \"$files\" | cut -d'/' -f2-)",
            "else",
            '  cp -r "${SRC_PATH}" /gcs/${DEST_PATH}',
            '  cd "${SRC_PATH}"',
            "  files=$(find . -type f | sed 's|^\\./|${DEST_PATH}/|' "
            "| cut -d'/' -f2- | tr '\\n' ',' | sed 's/,$//')",
            "fi",
            "echo 'Mock GCS upload complete. Mock GCS bucket content:'",
            "find /gcs -type f",
            'echo "uploaded=$files" >> "$GITHUB_OUTPUT"',
        ),
        shell="bash",
        env={"SRC_PATH": src_path, "DEST_PATH": dest_path},
    )


def mock_http_spy_step(step: Step, url: str, outputs: typ.Iterable[str]) -> Step:
    """Return a step posting the ``with`` inputs of ``step`` to an HTTP spy.

    The inputs are sent as a JSON object to ``url``, normally an
    :class:`act_harness.servers.HTTPSpy` reached through its container URL.
    Each name in ``outputs`` is read from the JSON reply and written as a
    step output.

    Raises
    ------
    MutationError
        If an output name cannot be used as a step output.
    """
    names = list(outputs)
    invalid = [name for name in names if not _OUTPUT_KEY_RE.match(name)]
    if invalid:
        msg = f"invalid output name(s) for spied step: {', '.join(invalid)}"
        raise MutationError(msg)
    return Step(
        name=_mocked_name(step),
        id=step.id,
        run=commands(
            "set -euo pipefail",
            'response=$(curl -sSf -X POST -H "Content-Type: application/json" '
            '--data "${SPY_INPUTS}" "${SPY_URL}")',
            *(
                f"echo \"{name}=$(jq -r '.[\"{name}\"] // \"\"' <<<\"$response\")\" "
                '>> "$GITHUB_OUTPUT"'
                for name in names
            ),
        ),
        shell="bash",
        env={"SPY_URL": url, "SPY_INPUTS": json.dumps(step.with_, sort_keys=True)},
    )
