"""Gatekeeper: moderation workflow engine for platform submissions."""

__version__ = "0.1.0"
