"""Monitoring core: models, ports, trackers and analytics."""
