"""Driving-school backend: request orchestration, versioned content and caching."""

__version__ = "1.0.0"
