"""Clawdbot node: exposes device capabilities to a remote gateway."""

__version__ = "1.0.0"
