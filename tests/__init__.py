"""Tests for the act harness."""
