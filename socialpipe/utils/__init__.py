"""Shared utilities: logging, configuration and bounded calls."""
