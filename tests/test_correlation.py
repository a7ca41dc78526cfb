"""Tests for :mod:`act_harness.correlation`."""

from __future__ import annotations

import uuid

from act_harness.correlation import default_uuid7_generator, strip_correlation_suffix

_HEX = "0190f3c2a1b27c3d8e9f0a1b2c3d4e5f"


def test_default_generator_returns_uuid7_hex() -> None:
    """Generated IDs are 32 lowercase hex digits of a version 7 UUID."""
    value = default_uuid7_generator()
    assert len(value) == 32
    assert value == value.lower()
    assert uuid.UUID(hex=value).version == 7


def test_default_generator_is_unique() -> None:
    """Consecutive IDs differ."""
    values = {default_uuid7_generator() for _ in range(50)}
    assert len(values) == 50


def test_strip_suffix_from_nested_job_names() -> None:
    """Suffixes are removed from every component of a nested job name."""
    assert strip_correlation_suffix(f"CD-{_HEX}/CI-{_HEX}/Build-{_HEX}") == "CD/CI/Build"


def test_strip_suffix_leaves_other_text() -> None:
    """Names without a suffix, and shorter hex runs, are left alone."""
    assert strip_correlation_suffix("Build plugin") == "Build plugin"
    assert strip_correlation_suffix("job-abc123") == "job-abc123"
