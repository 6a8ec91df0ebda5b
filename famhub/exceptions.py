"""FamHub exceptions."""


class FamHubError(Exception):
    """Base exception for FamHub."""

    def __init__(self, message: str, code: str = "FAMHUB_ERROR"):
        super().__init__(message)
        self.code = code


class DataAggregationError(FamHubError):
    """Family data could not be read or aggregated."""

    def __init__(self, message: str, code: str = "AGGREGATION_FAILED"):
        super().__init__(message, code=code)


class RefreshFailedError(FamHubError):
    """Every attempt of a refresh cycle failed."""

    def __init__(self, attempts: int):
        super().__init__(f"Refresh failed after {attempts} attempts", code="REFRESH_FAILED")
        self.attempts = attempts
