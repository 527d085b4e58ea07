"""
Pipeline error hierarchy.

Safety interventions and blocks are outcomes, not errors; see
``classroom_tutor.pipeline.outcomes``.
"""

from typing import Optional

from classroom_tutor.llm import LLMError


class PipelineError(Exception):
    """Base class for errors surfaced to the HTTP caller."""

    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(PipelineError):
    status_code = 400


class AuthError(PipelineError):
    """Missing or rejected credentials (401) or no access to the room (403)."""

    status_code = 401


class NotFoundError(PipelineError):
    status_code = 404


class UpstreamServiceError(PipelineError):
    """A supporting service failed; callers log it and continue."""

    status_code = 502

    def __init__(self, message: str, *, service: str):
        self.service = service
        super().__init__(message)


class CompletionStreamError(PipelineError):
    """
    The completion service failed.

    ``message`` is safe to show to a student; ``detail`` is the raw upstream
    diagnostic and is only ever logged.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        detail: Optional[str] = None,
        model: Optional[str] = None,
    ):
        self.detail = detail
        self.model = model
        super().__init__(message, status_code=status_code)


class AssessmentDispatchError(PipelineError):
    status_code = 502


def user_safe_completion_message(status_code: Optional[int], model: Optional[str] = None) -> str:
    """Student-facing text for an upstream completion status."""
    if status_code == 400:
        return "There was an issue with your request. Please try again with a different message."
    if status_code in (401, 403):
        return "Authentication error with the AI service. Please contact support."
    if status_code == 404:
        return "The AI service endpoint was not found. Please contact support."
    if status_code == 406:
        return (
            f"The selected AI model ({model or 'unknown'}) is temporarily unavailable. "
            "Please try a different model or contact support."
        )
    if status_code == 429:
        return "The AI service is currently handling too many requests. Please try again in a few moments."
    if status_code is not None and status_code >= 500:
        return "The AI service is experiencing technical difficulties. Please try again shortly."
    return "The AI service is temporarily unavailable. Please try again shortly."


def map_completion_error(error: LLMError, model: Optional[str] = None) -> CompletionStreamError:
    model = model or error.model
    return CompletionStreamError(
        user_safe_completion_message(error.status_code, model),
        status_code=error.status_code or 500,
        detail=str(error),
        model=model,
    )
