"""Declarative node bootstrapping from an offsetup.yml manifest."""

__version__ = "0.1.0"
