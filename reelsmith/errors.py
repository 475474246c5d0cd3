"""
Error taxonomy for the generation pipeline.

Scene-level errors (rate limits, backend failures, aborts) are caught by the
orchestrator and folded into SceneResult records. Only ValidationError and a
budget rejection at estimate time escape create_movie().
"""

from typing import Optional


class ReelsmithError(Exception):
    """Base class for every error raised by reelsmith."""

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.message, "type": type(self).__name__, **self.details}


class ValidationError(ReelsmithError):
    """Bad run input. Raised before any external call is made."""


class BudgetExceededError(ReelsmithError):
    """Projected or tracked spend would breach the ceiling."""

    def __init__(self, message: str, estimate: Optional[dict] = None, status: Optional[dict] = None):
        super().__init__(message, estimate=estimate, budget=status)
        self.estimate = estimate
        self.status = status


class RateLimitedError(ReelsmithError):
    def __init__(self, message: str, service: str = "", retry_after: int = 0):
        super().__init__(message, service=service, retry_after=retry_after)
        self.service = service
        self.retry_after = retry_after


class BackendFailure(ReelsmithError):
    """A remote backend call failed (timeout, bad payload, credits, HTTP error)."""

    TIMEOUT = "timeout"
    PAYMENT_REQUIRED = "payment_required"
    BAD_RESPONSE = "bad_response"
    REMOTE_ERROR = "remote_error"
    NO_MODELS = "no_models"
    EXHAUSTED = "exhausted"

    def __init__(self, message: str, model: str = "", kind: str = REMOTE_ERROR):
        super().__init__(message, model=model, kind=kind)
        self.model = model
        self.kind = kind


class ResponseDecodeError(BackendFailure):
    """Backend answered, but no clip URL could be extracted."""

    def __init__(self, message: str, model: str = ""):
        super().__init__(message, model=model, kind=BackendFailure.BAD_RESPONSE)


class AbortedError(ReelsmithError):
    """Cooperative cancellation was observed."""

    def __init__(self, message: str = "Generation aborted"):
        super().__init__(message)
