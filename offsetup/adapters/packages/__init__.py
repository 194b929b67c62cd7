"""System package-manager adapters."""
