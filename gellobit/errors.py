class PipelineError(Exception):
    """Base class for failures raised inside the ingestion pipeline."""


class ConfigurationError(PipelineError):
    """Missing secrets or an invalid feed policy. Fatal to one feed's run only."""


class FetchError(PipelineError):
    """The feed document could not be retrieved or parsed."""


class ScrapeFailure(PipelineError):
    """The linked page yielded no usable content."""


class AIUnavailable(PipelineError):
    """Provider error, timeout, rate limit or malformed verdict."""


class AIRejected(PipelineError):
    """The model judged the content invalid or below the quality threshold."""

    def __init__(self, reason: str, confidence: float | None = None):
        super().__init__(reason)
        self.reason = reason
        self.confidence = confidence


class PersistenceError(PipelineError):
    """A write to the opportunity store failed."""
