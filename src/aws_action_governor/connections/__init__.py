"""Connection records consumed by the governor."""
