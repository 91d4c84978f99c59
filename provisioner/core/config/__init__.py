"""Plan loading and run settings."""
