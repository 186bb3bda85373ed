"""Translate localization strings files with an OpenAI-compatible chat API."""

__version__ = "1.0.0"
