"""Workflow runs through act."""
