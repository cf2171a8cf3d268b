"""Custom exception hierarchy for the recommendation engine.

All application exceptions inherit from :class:`RecommendationError`, which
carries an optional ``component`` so log lines and error handlers can tell
which collaborator (e.g. "sqlite", "redis", "ContentBased") failed.

    RecommendationError  (base -- catch-all for any engine error)
    +-- StrategyError       (a scoring strategy could not produce candidates)
    +-- RepositoryError     (data-access collaborator failure)
    +-- CacheError          (persistent cache store failure)
    +-- ConfigurationError  (startup / invalid config)

The engine wraps any exception escaping a strategy in StrategyError, named
after the strategy, and downgrades it to an empty contribution.  CacheError
becomes a cache miss.  RepositoryError raised outside a strategy propagates
to the caller.
"""


class RecommendationError(Exception):
    """Base exception for all recommendation engine errors.

    ``__str__`` prefixes the component in brackets for log scanning,
    e.g. ``[sqlite] database is locked``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        component: str | None = None,
    ) -> None:
        self._message = message
        self._component = component
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def component(self) -> str | None:
        return self._component

    def __str__(self) -> str:
        if self._component:
            return f"[{self._component}] {self._message}"
        return self._message


class StrategyError(RecommendationError):
    """Raised when a recommendation strategy fails unexpectedly."""

    def __init__(
        self,
        message: str = "Recommendation strategy failed",
        component: str | None = None,
    ) -> None:
        super().__init__(message=message, component=component)


class RepositoryError(RecommendationError):
    """Raised when the data-access collaborator cannot serve a query."""

    def __init__(
        self,
        message: str = "Recommendation repository query failed",
        component: str | None = None,
    ) -> None:
        super().__init__(message=message, component=component)


class CacheError(RecommendationError):
    """Raised when the persistent cache store cannot be read or written."""

    def __init__(
        self,
        message: str = "Cache store operation failed",
        component: str | None = None,
    ) -> None:
        super().__init__(message=message, component=component)


class ConfigurationError(RecommendationError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        component: str | None = None,
    ) -> None:
        super().__init__(message=message, component=component)
