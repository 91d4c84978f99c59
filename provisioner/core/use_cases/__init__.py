"""Use cases — the operations the CLI exposes, one module each."""
