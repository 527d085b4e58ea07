"""
Message pipeline: gate, context composition, streaming and assessment.

Example:
    ```python
    from classroom_tutor.pipeline import MessageOrchestrator, TurnRequest

    orchestrator = MessageOrchestrator.from_config(config, store, feed)
    outcome = await orchestrator.handle(TurnRequest(room_id="r1", content="Hi", tutor_id="t1"), author)
    ```
"""

from classroom_tutor.pipeline.assessment import (
    ASSESSMENT_ERROR_MESSAGE,
    AssessmentTrigger,
    GradingClient,
    HttpGradingClient,
)
from classroom_tutor.pipeline.composer import (
    ComposedContext,
    ContextComposer,
    build_system_prompt,
    resolve_country_code,
)
from classroom_tutor.pipeline.errors import (
    AssessmentDispatchError,
    AuthError,
    CompletionStreamError,
    NotFoundError,
    PipelineError,
    UpstreamServiceError,
    ValidationError,
    map_completion_error,
    user_safe_completion_message,
)
from classroom_tutor.pipeline.orchestrator import GateDecision, MessageOrchestrator, TurnRequest
from classroom_tutor.pipeline.outcomes import (
    AssessmentPendingResult,
    Blocked,
    BlockedResult,
    BlockKind,
    Concern,
    Passed,
    SafetyInterventionResult,
    Skipped,
    Stage,
    StageOutcome,
    StreamingResult,
    TurnOutcome,
    stage_outcome,
)
from classroom_tutor.pipeline.streaming import DONE_FRAME, StreamingCompletion, clean_completion, sse_frame

__all__ = [
    # Orchestration
    "MessageOrchestrator",
    "TurnRequest",
    "GateDecision",
    # Stages
    "ContextComposer",
    "ComposedContext",
    "build_system_prompt",
    "resolve_country_code",
    "StreamingCompletion",
    "clean_completion",
    "sse_frame",
    "DONE_FRAME",
    "AssessmentTrigger",
    "GradingClient",
    "HttpGradingClient",
    "ASSESSMENT_ERROR_MESSAGE",
    # Outcomes
    "Stage",
    "BlockKind",
    "Passed",
    "Skipped",
    "Blocked",
    "Concern",
    "StageOutcome",
    "stage_outcome",
    "SafetyInterventionResult",
    "BlockedResult",
    "AssessmentPendingResult",
    "StreamingResult",
    "TurnOutcome",
    # Errors
    "PipelineError",
    "ValidationError",
    "AuthError",
    "NotFoundError",
    "UpstreamServiceError",
    "CompletionStreamError",
    "AssessmentDispatchError",
    "user_safe_completion_message",
    "map_completion_error",
]
