"""Permission boundary for governed actions."""
