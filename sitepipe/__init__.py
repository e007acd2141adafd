"""Incremental static-site asset pipeline with watch mode and live reload."""

__version__ = "0.1.0"
