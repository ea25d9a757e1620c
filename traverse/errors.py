from __future__ import annotations


class TraverseError(Exception):
    """Base class for errors raised inside the analysis engine."""


class ConfigurationError(TraverseError):
    """Required configuration (e.g. the Anthropic API key) is missing or invalid."""


class TaskNotFinishedError(TraverseError):
    """A reasoning task's result was read before its event stream was exhausted."""


class BackendResponseError(TraverseError):
    """The reasoning backend returned a response without usable text."""
