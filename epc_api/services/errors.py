"""Service-level failures surfaced to API callers."""


class SearchServiceError(Exception):
    """Upstream/database failure. The message is safe to show to callers."""

    def __init__(self, message: str = "Database query failed"):
        super().__init__(message)
        self.message = message


class PropertyNotFoundError(LookupError):
    def __init__(self, lmk_key: str):
        super().__init__(f"Property not found: {lmk_key}")
        self.lmk_key = lmk_key


class InvalidFilterError(ValueError):
    """A filter value passed schema checks but has no query mapping."""
