"""Supervised runner for streaming conversational-agent CLIs."""

__version__ = "0.1.0"
