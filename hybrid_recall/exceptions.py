"""
Error taxonomy for the recall engine.

Everything raised on purpose by the engine derives from RecallError so a host
can catch one type at its boundary.  Provider adapters translate transport
failures into NetworkFailureError / ProviderTimeoutError; the core decides
per operation whether an error degrades the result or propagates.
"""
from __future__ import annotations


class RecallError(Exception):
    """Base class for all recall engine errors."""


class ConfigurationMissingError(RecallError):
    """A provider, model or endpoint required by the operation is not configured."""


class NetworkFailureError(RecallError):
    """The provider endpoint could not be reached or answered with an error."""


class ProviderTimeoutError(NetworkFailureError):
    """A provider call did not finish within the configured request timeout."""


class ParseFailureError(RecallError):
    """A document could not be parsed (e.g. malformed JSON note)."""


class NotFoundError(RecallError):
    """A referenced document, chunk or text payload does not exist."""


class IndexCorruptionError(RecallError):
    """A persisted index could not be imported."""


class RebuildError(RecallError):
    """A full rebuild failed as a whole."""
