#!/usr/bin/env python3
"""Exceptions raised by the translator. Every error aborts the run."""


class TranslatorError(Exception):
    """Base exception for all translator errors."""


class ConfigurationError(TranslatorError, ValueError):
    """Raised when a configuration value is missing or out of range."""


class FormatError(TranslatorError):
    """Raised for unsupported file extensions or malformed strings files."""


class FileWriteError(TranslatorError, OSError):
    """Raised when the target file or its parent directory cannot be written."""


class ApiError(TranslatorError):
    """Raised when the chat-completion API returns a non-success response."""


class RequestTimeoutError(TranslatorError, TimeoutError):
    """Raised when a request exceeds the configured timeout."""


class ResponseParseError(TranslatorError):
    """Raised when a response cannot be mapped back onto its batch."""
