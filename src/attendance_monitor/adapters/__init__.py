"""Adapters implementing core ports."""
