"""Exceptions raised by the hybrid search path."""


class SearchError(Exception):
    """Base exception for search operations."""
    pass


class InvalidSearchRequestError(SearchError, ValueError):
    """Paging or query parameters are out of range."""
    pass


class QueryEmbeddingError(SearchError):
    """The query could not be embedded; there is no keyword-only fallback."""
    pass


class SearchTimeoutError(SearchError):
    """The request did not finish within its deadline."""
    pass


class InvalidConfigError(SearchError, ValueError):
    """A scoring configuration value is missing or out of range."""
    pass
