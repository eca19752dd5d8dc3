"""Execution plan generation."""
