"""Action catalog and descriptor parsing."""
