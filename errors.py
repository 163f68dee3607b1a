"""Error taxonomy shared by the store, the storage backends and the HTTP layer.

Every error carries the HTTP status it maps to; main.py turns any of them
into a ``{"error": message}`` body.
"""


class CatalogError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CatalogError):
    """A required field is missing or a value has the wrong shape."""
    status_code = 400


class NotFoundError(CatalogError):
    status_code = 404


class ConflictError(CatalogError):
    status_code = 409


class PersistenceError(CatalogError):
    """Reading or writing the backing store failed."""
    status_code = 500


class StaleVersionError(PersistenceError):
    """A conditional write was rejected because the remote file changed."""


class UpstreamError(CatalogError):
    """A third-party API answered with an error or an unreadable body."""
    status_code = 500
