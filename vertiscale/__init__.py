"""Vertical autoscaler for a single game server instance."""

__version__ = "0.1.0"
