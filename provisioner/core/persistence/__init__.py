"""Run report and audit ledger persistence."""
