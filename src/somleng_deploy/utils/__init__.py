"""Shared helpers: command execution and logging decorators."""
