"""CLI rendering helpers and sub-command groups."""
