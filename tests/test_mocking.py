"""Tests for :mod:`act_harness.mocking`."""

from __future__ import annotations

import json

import pytest

from act_harness.document import Job, Step
from act_harness.errors import MutationError
from act_harness.mocking import (
    ARGO_WORKFLOW_ACTION,
    GCS_UPLOAD_ACTION,
    GITHUB_APP_TOKEN_ACTION,
    MOCK_ARGO_WORKFLOW_URI,
    MOCK_GITHUB_APP_TOKEN,
    VAULT_SECRETS_ACTION,
    VaultSecrets,
    copy_mock_files_step,
    declared_outputs,
    mock_argo_workflow_step,
    mock_gcs_upload_step,
    mock_github_app_token_step,
    mock_http_spy_step,
    mock_secrets_step,
    mock_step,
    mock_vault_secrets_step,
    no_op_step,
    output_references,
    validate_output_references,
)

VAULT_LINES = "APP_ID=bot:app-id\nAPP_KEY=bot:private-key\n"


def _vault_step(**with_: object) -> Step:
    return Step(
        name="Get secrets",
        id="get-secrets",
        uses=f"{VAULT_SECRETS_ACTION}@abc123",
        with_={"common_secrets": VAULT_LINES, **with_},
    )


class TestDeclaredOutputs:
    """Reading the outputs a ``run`` step writes."""

    def test_reads_quoted_and_unquoted_lines(self) -> None:
        """Both redirect spellings and both quoting styles are recognised."""
        step = Step(
            run="\n".join(
                [
                    'echo "uri=https://example.com" >> "$GITHUB_OUTPUT"',
                    "echo zip=plugin.zip >> ${GITHUB_OUTPUT}",
                    "echo 'list=[]' >> $GITHUB_OUTPUT",
                    'echo "noise"',
                    'echo "VAR=1" >> "$GITHUB_ENV"',
                ]
            )
        )
        assert declared_outputs(step) == {
            "uri": "https://example.com",
            "zip": "plugin.zip",
            "list": "[]",
        }

    def test_heredoc_marker_declares_name(self) -> None:
        """A multi-line ``NAME<<EOF`` output is recognised by name."""
        step = Step(run='echo "body<<EOF" >> "$GITHUB_OUTPUT"')
        assert set(declared_outputs(step)) == {"body"}

    def test_action_steps_are_unknown(self) -> None:
        """Outputs of an action cannot be known statically."""
        assert declared_outputs(Step(uses="org/action@v1")) is None


def test_output_references_forms() -> None:
    """Dotted and bracketed references are found in nested values."""
    refs = output_references(
        {
            "a": "${{ steps.vault.outputs.TOKEN }}",
            "b": ["${{ steps['x'] }}", "${{ steps.vault.outputs['other-name'] }}"],
            "c": {"d": "${{ fromJSON(steps.ctx.outputs.result).isTrusted }}"},
        }
    )
    assert refs == {("vault", "TOKEN"), ("vault", "other-name"), ("ctx", "result")}


class TestValidateOutputReferences:
    """Checking that later steps still resolve."""

    def test_accepts_declared_outputs(self) -> None:
        """References to declared outputs pass."""
        job = Job(
            outputs={"token": "${{ steps.s.outputs.TOKEN }}"},
            steps=[
                Step(id="s", run='echo "TOKEN=x" >> "$GITHUB_OUTPUT"'),
                Step(run="echo ${{ steps.s.outputs.TOKEN }}"),
            ],
        )
        validate_output_references(job, 0)

    def test_rejects_missing_output_in_later_step(self) -> None:
        """A later step reading an undeclared output is reported with context."""
        job = Job(
            steps=[
                Step(id="s", run='echo "TOKEN=x" >> "$GITHUB_OUTPUT"'),
                Step(run="echo ${{ steps.s.outputs.OTHER }}"),
            ]
        )
        with pytest.raises(MutationError, match="OTHER") as excinfo:
            validate_output_references(job, 0, node="act-ci-1.yml", job_id="build")
        assert excinfo.value.job_id == "build"
        assert excinfo.value.step_index == 0

    def test_rejects_missing_job_output(self) -> None:
        """Job outputs are checked too."""
        job = Job(
            outputs={"x": "${{ steps.s.outputs.gone }}"},
            steps=[Step(id="s", run="echo nothing")],
        )
        with pytest.raises(MutationError, match="gone"):
            validate_output_references(job, 0)

    def test_earlier_steps_are_ignored(self) -> None:
        """Only steps after the replaced one can read its outputs."""
        job = Job(
            steps=[
                Step(run="echo ${{ steps.s.outputs.OTHER }}"),
                Step(id="s", run="echo nothing"),
            ]
        )
        validate_output_references(job, 1)


def test_mock_step_requires_uses() -> None:
    """Only action steps can be mocked."""
    with pytest.raises(MutationError, match="no 'uses'"):
        mock_step(Step(run="echo"), no_op_step)


def test_no_op_step_keeps_id() -> None:
    """No-op steps keep the id so conditions on the step still resolve."""
    step = no_op_step(Step(name="Login", id="gcloud", uses="x/auth@v2"))
    assert step.id == "gcloud"
    assert step.uses == ""
    assert "no-opp'ed" in step.name


def test_copy_mock_files_step() -> None:
    """Mock files are copied from the ``/mockdata`` mount."""
    step = copy_mock_files_step("dist/simple", "${{ github.workspace }}/dist/")
    assert "cp -r /mockdata/dist/simple/. ${{ github.workspace }}/dist/" in step.run
    assert step.shell == "bash"


class TestMockSecrets:
    """Generic secret mocking."""

    def test_outputs_are_exactly_the_secrets(self) -> None:
        """The mocked step declares exactly the supplied secrets."""
        original = Step(name="Fetch", id="secrets", uses="org/secrets@v1")
        mocked = mock_secrets_step(original, {"TOKEN": "mock-token"})
        assert declared_outputs(mocked) == {"TOKEN": "mock-token"}
        assert mocked.id == "secrets"
        assert mocked.name == "Fetch (mocked)"

    def test_values_are_shell_quoted(self) -> None:
        """Values with shell metacharacters are quoted."""
        mocked = mock_secrets_step(Step(id="s", uses="o/a@v1"), {"KEY": "a b;c"})
        assert mocked.run == "echo 'KEY=a b;c' >> \"$GITHUB_OUTPUT\""
        assert declared_outputs(mocked) == {"KEY": "a b;c"}


class TestMockVault:
    """Vault secret mocking."""

    def test_exports_env_by_default(self) -> None:
        """Each secret is written to ``$GITHUB_ENV`` in sorted order."""
        secrets = VaultSecrets(common_secrets={"bot:app-id": "42", "bot:private-key": "key"})
        mocked = mock_vault_secrets_step(_vault_step(), secrets)
        assert mocked.run.splitlines() == [
            'echo APP_ID=42 >> "$GITHUB_ENV"',
            'echo APP_KEY=key >> "$GITHUB_ENV"',
        ]
        assert mocked.id == "get-secrets"

    def test_json_output_when_export_disabled(self) -> None:
        """With ``export_env: false`` a ``secrets`` JSON output is emitted."""
        secrets = VaultSecrets(default_value="mock")
        mocked = mock_vault_secrets_step(_vault_step(export_env="false"), secrets)
        assert set(declared_outputs(mocked)) == {"secrets"}
        assert json.loads(mocked.env["SECRETS_JSON"]) == {"APP_ID": "mock", "APP_KEY": "mock"}

    def test_expression_export_env_defaults_to_export(self) -> None:
        """Values only known at run time fall back to exporting."""
        mocked = mock_vault_secrets_step(
            _vault_step(export_env="${{ inputs.export }}"), VaultSecrets(default_value="v")
        )
        assert "GITHUB_ENV" in mocked.run

    def test_repo_secrets_are_read(self) -> None:
        """References from ``repo_secrets`` use their own map."""
        step = _vault_step(repo_secrets="GCOM_TOKEN=gcom:token")
        secrets = VaultSecrets(
            common_secrets={"bot:app-id": "1", "bot:private-key": "2"},
            repo_secrets={"gcom:token": "t"},
        )
        assert "echo GCOM_TOKEN=t" in mock_vault_secrets_step(step, secrets).run

    def test_missing_reference_without_default(self) -> None:
        """Unknown references are an error unless a default is configured."""
        with pytest.raises(MutationError, match="not found in provided mock secrets"):
            mock_vault_secrets_step(_vault_step(), VaultSecrets())

    def test_malformed_line(self) -> None:
        """Lines that are not ``NAME=reference`` are rejected."""
        step = _vault_step(common_secrets="JUST_A_NAME")
        with pytest.raises(MutationError, match="expected NAME=reference"):
            mock_vault_secrets_step(step, VaultSecrets(default_value="x"))

    def test_wrong_action(self) -> None:
        """Steps using another action are rejected."""
        with pytest.raises(MutationError, match="must be"):
            mock_vault_secrets_step(Step(uses="org/other@v1"), VaultSecrets())


class TestMockStockActions:
    """Argo, GitHub App token and GCS upload mocks."""

    def test_argo_workflow(self) -> None:
        """The mocked trigger emits a fixed URI."""
        mocked = mock_argo_workflow_step(
            Step(id="argo", uses=f"{ARGO_WORKFLOW_ACTION}@abc")
        )
        assert declared_outputs(mocked) == {"uri": MOCK_ARGO_WORKFLOW_URI}

    def test_github_app_token(self) -> None:
        """The mocked token step exposes ``token`` through an env var."""
        mocked = mock_github_app_token_step(
            Step(id="app-token", uses=f"{GITHUB_APP_TOKEN_ACTION}@v2")
        )
        assert set(declared_outputs(mocked)) == {"token"}
        assert mocked.env == {"MOCK_TOKEN": MOCK_GITHUB_APP_TOKEN}

    def test_gcs_upload(self) -> None:
        """Upload inputs are passed to the copy script as env vars."""
        mocked = mock_gcs_upload_step(
            Step(
                id="upload",
                uses=f"{GCS_UPLOAD_ACTION}@v2",
                with_={"path": "dist", "destination": "bucket/plugin"},
            )
        )
        assert mocked.env == {"SRC_PATH": "dist", "DEST_PATH": "bucket/plugin"}
        assert set(declared_outputs(mocked)) == {"uploaded"}

    def test_gcs_upload_requires_inputs(self) -> None:
        """Missing ``path`` or ``destination`` inputs are rejected."""
        with pytest.raises(MutationError, match="inputs are not valid"):
            mock_gcs_upload_step(Step(uses=f"{GCS_UPLOAD_ACTION}@v2", with_={"path": "x"}))


class TestMockHTTPSpyStep:
    """Steps forwarding their inputs to an HTTP spy."""

    def test_inputs_and_outputs(self) -> None:
        """Inputs are sent as JSON and every output is declared."""
        step = Step(
            id="argo",
            uses=f"{ARGO_WORKFLOW_ACTION}@abc123",
            with_={"namespace": "grafana-plugins-cd", "parameters": "a=b"},
        )
        mocked = mock_http_spy_step(
            step, "http://host.docker.internal:1234", ("uri", "status")
        )
        assert mocked.id == "argo"
        assert mocked.uses == ""
        assert mocked.env["SPY_URL"] == "http://host.docker.internal:1234"
        assert json.loads(mocked.env["SPY_INPUTS"]) == {
            "namespace": "grafana-plugins-cd",
            "parameters": "a=b",
        }
        outputs = declared_outputs(mocked)
        assert outputs is not None
        assert sorted(outputs) == ["status", "uri"]

    def test_invalid_output_name(self) -> None:
        """Output names that GitHub would reject are refused."""
        step = Step(id="argo", uses=f"{ARGO_WORKFLOW_ACTION}@abc123")
        with pytest.raises(MutationError, match="bad name"):
            mock_http_spy_step(step, "http://spy", ["uri", "bad name"])
