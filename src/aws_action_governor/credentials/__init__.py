"""Temporary, plan-scoped AWS credentials."""
