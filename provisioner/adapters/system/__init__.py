"""System adapters: packages, services, group membership."""
