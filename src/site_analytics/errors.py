"""
Error taxonomy for the ingestion and read paths.

Every failure the core can produce maps onto one of these classes, and each
class has a fixed treatment at the endpoint boundary:

- ValidationError: malformed or incomplete payload, always HTTP 400
- NotFoundError: unknown session or visitor; soft on ingestion, 404 on reads
- UpstreamServiceError: geolocation lookups; absorbed into "Unknown" fields
- StorageError: the database rejected or never received a statement; HTTP 500
"""


class AnalyticsError(Exception):
    """Base class for all analytics errors."""

    status_code = 500


class ValidationError(AnalyticsError):
    """Raised when a request payload is malformed or misses required fields."""

    status_code = 400

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.fields = fields or []


class NotFoundError(AnalyticsError):
    """Raised when a referenced session or visitor does not exist."""

    status_code = 404


class UpstreamServiceError(AnalyticsError):
    """Raised by external lookups (IP geolocation). Never leaves the core."""

    status_code = 502


class StorageError(AnalyticsError):
    """Raised when the database is unreachable or rejects a statement."""

    status_code = 500
