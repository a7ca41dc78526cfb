"""Correlation ID helpers."""

from __future__ import annotations

import re

import uuid_utils

_SUFFIX_RE = re.compile(r"-[0-9a-f]{32}(?![0-9a-f])")


def default_uuid7_generator() -> str:
    """Return an RFC 4122 UUIDv7 hex string."""
    return uuid_utils.uuid7().hex


def strip_correlation_suffix(text: str) -> str:
    """Return ``text`` without ``-<uuid7 hex>`` correlation suffixes.

    act names jobs of reusable workflows ``<caller job>/<callee job>``, so
    every suffix is removed, not only a trailing one. Used to make job names
    readable again in log output.

    Examples
    --------
    >>> strip_correlation_suffix("CI-0190f3c2a1b27c3d8e9f0a1b2c3d4e5f")
    'CI'
    >>> strip_correlation_suffix(
    ...     "CI-0190f3c2a1b27c3d8e9f0a1b2c3d4e5f/Build-0190f3c2a1b27c3d8e9f0a1b2c3d4e5f"
    ... )
    'CI/Build'
    """
    return _SUFFIX_RE.sub("", text)
