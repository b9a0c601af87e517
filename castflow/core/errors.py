"""Error types raised across the pipeline."""


class PipelineError(Exception):
    """Base class for pipeline errors."""


class ValidationError(PipelineError):
    """Raised when a request or job payload fails validation."""

    status_code = 400


class DataIntegrityError(PipelineError):
    """Raised when data read from a store or model output is inconsistent."""


class MissingDataError(DataIntegrityError):
    """Raised when a required record is absent."""


class CacheCorruptedError(PipelineError):
    """Raised when a cached payload decodes to an empty structure."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Cached value for {key} is empty")
        self.key = key


class MediaProcessingError(PipelineError):
    """Raised inside media handlers; the describer turns it into a null result."""


class ProviderError(PipelineError):
    """Raised when an AI provider returns an unusable response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
