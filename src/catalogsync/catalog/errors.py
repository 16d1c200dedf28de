"""Typed failures raised by the catalog source client.

The sync controller maps these onto SyncError types, so every failure the
client can produce must be one of these classes.
"""


class CatalogError(RuntimeError):
    """Base class for catalog source failures."""


class CatalogFetchError(CatalogError):
    """Transport failure or non-success HTTP status."""


class CatalogTimeoutError(CatalogError):
    """The request did not complete within the configured timeout."""


class CatalogPermissionError(CatalogError):
    """Authentication or authorization was rejected by the catalog."""


class CatalogParseError(CatalogError):
    """The response payload was not the expected shape."""
