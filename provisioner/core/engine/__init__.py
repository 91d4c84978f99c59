"""Reconciliation engine: graph, probe, executor, loop, report."""
