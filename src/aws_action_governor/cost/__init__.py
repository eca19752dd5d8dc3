"""Cost anomaly admission control."""
