"""Approval lifecycle, step execution and rollback."""
