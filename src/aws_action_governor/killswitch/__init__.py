"""Multi-scope kill switch registry."""
