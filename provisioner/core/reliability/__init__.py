"""Retry policy."""
