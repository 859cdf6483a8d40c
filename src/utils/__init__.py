"""Shared utilities: configuration, logging setup and paths."""
