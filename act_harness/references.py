"""Parsing and matching of ``uses`` references.

A reference has the shape ``<owner>/<repo>/<path>@<ref>``, optionally followed
by a version comment (``actions/checkout@abc123 # v4.2.1``). Its logical
identity is everything before the ``@``: two references with different pins
still name the same action or workflow.
"""

from __future__ import annotations

import dataclasses
import posixpath

__all__ = [
    "ActionRef",
    "matches_action",
    "workflow_file_name",
    "workflow_ref",
]


@dataclasses.dataclass(frozen=True, slots=True)
class ActionRef:
    """A parsed ``uses`` reference.

    Attributes
    ----------
    path : str
        Logical identity, e.g. ``grafana/shared-workflows/actions/get-vault-secrets``.
    ref : str | None
        Pinned branch, tag or commit after the ``@``, if any.
    comment : str | None
        Trailing version comment, if any.
    """

    path: str
    ref: str | None = None
    comment: str | None = None

    @classmethod
    def parse(cls, text: str) -> ActionRef:
        """Parse ``text`` into an :class:`ActionRef`.

        Examples
        --------
        >>> ActionRef.parse("actions/checkout@eef6144 # v4.2.1")
        ActionRef(path='actions/checkout', ref='eef6144', comment='v4.2.1')
        >>> ActionRef.parse("./.github/actions/setup").ref is None
        True
        """
        value, comment = _split_comment(text)
        if value.startswith("docker://"):
            return cls(path=value, comment=comment)
        path, sep, ref = value.partition("@")
        return cls(path=path.strip(), ref=ref.strip() if sep else None, comment=comment)

    @property
    def file_name(self) -> str:
        """Return the last path component, e.g. ``ci.yml`` for a workflow call."""
        return posixpath.basename(self.path.rstrip("/"))

    def __str__(self) -> str:
        return self.path if self.ref is None else f"{self.path}@{self.ref}"


def _split_comment(text: str) -> tuple[str, str | None]:
    value = text.strip()
    for marker in (" #", "\t#"):
        head, sep, tail = value.partition(marker)
        if sep:
            return head.strip(), tail.strip() or None
    return value, None


def matches_action(uses: str | None, query: str) -> bool:
    """Return True when ``uses`` invokes the action named by ``query``.

    The version pin of ``uses`` is ignored unless ``query`` carries one too.

    Examples
    --------
    >>> matches_action("org/action@0123abcd", "org/action")
    True
    >>> matches_action("org/action-extra@v1", "org/action")
    False
    >>> matches_action("org/action@v1", "org/action@v2")
    False
    """
    if not uses:
        return False
    candidate = ActionRef.parse(uses)
    wanted = ActionRef.parse(query)
    if candidate.path != wanted.path:
        return False
    return wanted.ref is None or candidate.ref == wanted.ref


def workflow_file_name(uses: str | None) -> str | None:
    """Return the logical workflow file a reusable-workflow call points at.

    Examples
    --------
    >>> workflow_file_name("grafana/plugin-ci-workflows/.github/workflows/ci.yml@main")
    'ci.yml'
    >>> workflow_file_name(None) is None
    True
    """
    if not uses:
        return None
    return ActionRef.parse(uses).file_name or None


def workflow_ref(base_ref: str, file_name: str, branch: str) -> str:
    """Format a reusable-workflow reference to ``file_name`` under ``base_ref``.

    Examples
    --------
    >>> workflow_ref("org/repo/.github/workflows", "act-ci-1.yml", "main")
    'org/repo/.github/workflows/act-ci-1.yml@main'
    """
    return f"{base_ref.rstrip('/')}/{file_name}@{branch}"
