"""
Custom error classes for Cloudinha Analytics.
Structured error handling with error codes across all modules.

Hierarchy:
    AnalyticsError
    ├── DataError
    │   ├── ConfigError
    │   └── DataFetchError
    │       └── BatchTooLargeError
    └── InsightError
        ├── AIProviderError
        └── InsightParseError
"""


class AnalyticsError(Exception):
    """Base exception for all Cloudinha Analytics errors."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: dict = None):
        self.code = code
        self.details = details or {}
        super().__init__(f"[{code}] {message}")


# --- Data Errors ---

class DataError(AnalyticsError):
    """Base class for data loading and configuration errors."""
    pass


class ConfigError(DataError):
    """Configuration file error."""

    def __init__(self, message: str, config_path: str = None):
        super().__init__(
            message, code="CONFIG_ERROR",
            details={"config_path": config_path},
        )


class DataFetchError(DataError):
    """Failed to fetch rows from the datastore."""

    def __init__(
        self, message: str, source: str = None, cause: Exception = None,
        code: str = "DATA_FETCH_FAILED",
    ):
        details = {"source": source}
        if cause is not None:
            details["cause"] = str(cause)
        super().__init__(message, code=code, details=details)
        self.source = source


class BatchTooLargeError(DataFetchError):
    """The datastore rejected an id-list query for its size (HTTP 413/414)."""

    def __init__(self, message: str, source: str = None, cause: Exception = None):
        super().__init__(message, source=source, cause=cause, code="BATCH_TOO_LARGE")


# --- Insight Errors ---

class InsightError(AnalyticsError):
    """Base class for AI insight generation errors."""
    pass


class AIProviderError(InsightError):
    """The text-completion provider is unavailable or misconfigured."""

    def __init__(self, provider: str, message: str, status_code: int = None):
        super().__init__(
            f"{provider}: {message}", code="AI_PROVIDER_ERROR",
            details={"provider": provider, "status_code": status_code},
        )
        self.status_code = status_code


class InsightParseError(InsightError):
    """Completion text did not contain a usable insights payload."""

    def __init__(self, message: str, excerpt: str = ""):
        super().__init__(
            message, code="INSIGHT_PARSE_FAILED",
            details={"excerpt": excerpt[:200]},
        )
