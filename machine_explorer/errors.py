class QueryError(Exception):
    """Recoverable failure of a single request against an external source."""


class FetchError(QueryError):
    """Transport, HTTP status or remote protocol failure."""


class ValidationError(QueryError):
    """A result arrived but did not have the expected shape."""
