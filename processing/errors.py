"""Exceptions shared by the enrichment stages."""


class ConfigurationError(ValueError):
    """A required credential or endpoint is missing.

    Raised when a client is constructed, never per record.
    """


class TransientEnrichmentError(RuntimeError):
    """An upstream call failed in a way a later batch may recover from."""
