"""Configuration for building and running testing workflows.

Tree construction never reads process-wide state: callers pass a
:class:`HarnessConfig` explicitly, so independent test cases can use their
own base references and correlation ID sources.
"""

from __future__ import annotations

import dataclasses
import os
import typing as typ
from pathlib import Path

from .correlation import default_uuid7_generator

__all__ = [
    "DEFAULT_BASE_REF",
    "DEFAULT_RUNNER_LABELS",
    "HarnessConfig",
    "coerce_bool",
    "coerce_int",
]

DEFAULT_REPOSITORY = "grafana/plugin-ci-workflows"
DEFAULT_BASE_REF = f"{DEFAULT_REPOSITORY}/.github/workflows"
DEFAULT_RUNNER_IMAGE = "ghcr.io/catthehacker/ubuntu:act-latest"
DEFAULT_RUNNER_LABELS: tuple[str, ...] = (
    "ubuntu-latest",
    "ubuntu-x64-small",
    "ubuntu-x64",
    "ubuntu-x64-large",
    "ubuntu-x64-xlarge",
    "ubuntu-x64-2xlarge",
    "ubuntu-arm64-small",
    "ubuntu-arm64",
    "ubuntu-arm64-large",
    "ubuntu-arm64-xlarge",
    "ubuntu-arm64-2xlarge",
)

ENV_PREFIX = "ACT_HARNESS_"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def coerce_bool(value: str | None, *, default: bool, parameter: str) -> bool:
    """Coerce an environment value to bool, or return ``default`` when unset.

    Examples
    --------
    >>> coerce_bool("Yes", default=False, parameter="X")
    True
    >>> coerce_bool(" ", default=True, parameter="X")
    True
    """
    if value is None or not value.strip():
        return default
    normalised = value.strip().lower()
    if normalised in _TRUTHY:
        return True
    if normalised in _FALSY:
        return False
    msg = f"Invalid value for {parameter}: {value!r}. Expected a boolean."
    raise ValueError(msg)


def coerce_int(value: str | None, *, default: int, parameter: str) -> int:
    """Coerce an environment value to a positive int, or return ``default``."""
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value.strip(), base=10)
    except ValueError as exc:
        msg = f"Invalid value for {parameter}: {value!r}. Expected an integer."
        raise ValueError(msg) from exc
    if parsed <= 0:
        msg = f"Invalid value for {parameter}: {value!r}. Expected a positive integer."
        raise ValueError(msg)
    return parsed


@dataclasses.dataclass(frozen=True, slots=True)
class HarnessConfig:
    """Settings shared by every node of a composition tree.

    Attributes
    ----------
    base_ref : str
        Prefix used when pointing a ``uses`` reference at a generated
        workflow file, e.g. ``owner/repo/.github/workflows``.
    repository : str
        ``owner/repo`` mapped to the local checkout when running act.
    branch : str
        Trailing ``@<branch>`` marker of generated workflow references.
    workflows_dir : Path
        Directory holding the real workflow definitions; generated files are
        written next to them so act resolves them as reusable workflows.
    mockdata_dir : Path
        Local directory with mock files, mounted at ``/mockdata`` in act.
    runner_image : str
        Container image used for every runner label.
    runner_labels : tuple[str, ...]
        ``runs-on`` labels mapped to ``runner_image``.
    act_timeout : int
        Seconds to wait for a single act invocation.
    verbose : bool
        Echo raw act JSON log lines.
    id_factory : Callable[[], str]
        Source of correlation IDs for new composition trees.
    """

    base_ref: str = DEFAULT_BASE_REF
    repository: str = DEFAULT_REPOSITORY
    branch: str = "main"
    workflows_dir: Path = Path(".github") / "workflows"
    mockdata_dir: Path = Path("tests") / "act" / "mockdata"
    runner_image: str = DEFAULT_RUNNER_IMAGE
    runner_labels: tuple[str, ...] = DEFAULT_RUNNER_LABELS
    act_timeout: int = 1800
    verbose: bool = False
    id_factory: typ.Callable[[], str] = default_uuid7_generator

    def new_correlation_id(self) -> str:
        """Return a fresh correlation ID from :attr:`id_factory`."""
        return self.id_factory()

    def with_overrides(self, **changes: typ.Any) -> HarnessConfig:  # noqa: ANN401
        """Return a copy of this configuration with ``changes`` applied."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_env(cls, environ: typ.Mapping[str, str] | None = None) -> HarnessConfig:
        """Build a configuration from ``ACT_HARNESS_*`` environment variables.

        Recognised variables are ``ACT_HARNESS_BASE_REF``,
        ``ACT_HARNESS_REPOSITORY``, ``ACT_HARNESS_BRANCH``,
        ``ACT_HARNESS_WORKFLOWS_DIR``, ``ACT_HARNESS_MOCKDATA_DIR``,
        ``ACT_HARNESS_RUNNER_IMAGE``, ``ACT_HARNESS_TIMEOUT`` and
        ``ACT_HARNESS_VERBOSE``. Unset or empty variables keep the defaults.

        Raises
        ------
        ValueError
            If a boolean or integer variable cannot be interpreted.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def _get(name: str) -> str | None:
            value = env.get(f"{ENV_PREFIX}{name}")
            return value.strip() if value and value.strip() else None

        repository = _get("REPOSITORY") or defaults.repository
        base_ref = _get("BASE_REF") or f"{repository}/.github/workflows"
        workflows_dir = _get("WORKFLOWS_DIR")
        mockdata_dir = _get("MOCKDATA_DIR")
        return cls(
            base_ref=base_ref,
            repository=repository,
            branch=_get("BRANCH") or defaults.branch,
            workflows_dir=Path(workflows_dir) if workflows_dir else defaults.workflows_dir,
            mockdata_dir=Path(mockdata_dir) if mockdata_dir else defaults.mockdata_dir,
            runner_image=_get("RUNNER_IMAGE") or defaults.runner_image,
            act_timeout=coerce_int(
                _get("TIMEOUT"),
                default=defaults.act_timeout,
                parameter=f"{ENV_PREFIX}TIMEOUT",
            ),
            verbose=coerce_bool(
                _get("VERBOSE"),
                default=defaults.verbose,
                parameter=f"{ENV_PREFIX}VERBOSE",
            ),
        )
