"""Download transports for the artifact pipeline."""
