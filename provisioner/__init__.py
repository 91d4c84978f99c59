"""Workstation Provisioner — declarative, idempotent environment bootstrap."""

__version__ = "0.1.0"
