"""
Message orchestrator.

Drives one submitted message through the gate and into exactly one
outcome:

    Received -> SafetyChecked -> FilterChecked -> ModerationChecked
        -> Blocked
        -> SafetyIntervention
        -> AssessmentTriggered
        -> ContextBuilding -> Streaming -> Persisted

The gate is strictly sequential. A safety concern skips the content
filter and overrides a moderation flag so a cry for help is never
silently blocked. A concern the verifier rejects goes back through the
filter and moderation as an ordinary message. Retrieval for RAG tutors
starts once the classifier is clear, runs concurrently with the rest of
the gate and is discarded when the turn does not stream.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Optional

from classroom_tutor.config import PipelineConfig
from classroom_tutor.llm import LLMProvider, get_provider
from classroom_tutor.memory import MemoryService, MemoryStore, MemorySummarizer
from classroom_tutor.models import (
    Author,
    ChatMessage,
    FilteredContentRecord,
    Meta,
    Role,
    Room,
    TutorProfile,
    is_test_room,
    new_id,
)
from classroom_tutor.pipeline.assessment import AssessmentTrigger, GradingClient, HttpGradingClient
from classroom_tutor.pipeline.composer import ContextComposer, resolve_country_code
from classroom_tutor.pipeline.errors import AuthError, NotFoundError, ValidationError
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
)
from classroom_tutor.pipeline.streaming import StreamingCompletion
from classroom_tutor.realtime import RealtimeFeed
from classroom_tutor.retrieval import Passage, RetrievalAdapter
from classroom_tutor.safety import (
    AuditLog,
    ContentFilter,
    ModerationAdapter,
    SafetyClassifier,
    SafetyResponder,
    TeacherNotifier,
    build_audit_log,
    build_moderation_flag,
    build_notifier,
    is_self_harm_text,
    kind_filter_message,
    kind_moderation_message,
    normalize_country_code,
)
from classroom_tutor.safety.helplines import DEFAULT_COUNTRY
from classroom_tutor.safety.types import FilterResult, ModerationResult, SafetyFinding
from classroom_tutor.store import MessageStore

logger = logging.getLogger(__name__)

AUDIT_CONTENT_CHARS = 500


@dataclass
class TurnRequest:
    """One submitted message."""

    room_id: str
    content: str
    tutor_id: str
    instance_id: Optional[str] = None
    model: Optional[str] = None
    country_code: Optional[str] = None
    message_id: Optional[str] = None
    """Id of a row already persisted upstream; never inserted twice."""


@dataclass
class GateDecision:
    finding: SafetyFinding
    trace: list[StageOutcome] = field(default_factory=list)
    filter_result: Optional[FilterResult] = None
    moderation: Optional[ModerationResult] = None

    @property
    def blocked(self) -> Optional[Blocked]:
        for outcome in self.trace:
            if isinstance(outcome, Blocked):
                return outcome
        return None


class MessageOrchestrator:
    """
    Runs message turns.

    Example:
        ```python
        orchestrator = MessageOrchestrator.from_config(config, store, feed)
        outcome = await orchestrator.handle(TurnRequest(room_id="r1", content="Hi", tutor_id="t1"), author)
        ```
    """

    def __init__(
        self,
        store: MessageStore,
        composer: ContextComposer,
        streamer: StreamingCompletion,
        responder: SafetyResponder,
        *,
        default_model: str,
        classifier: Optional[SafetyClassifier] = None,
        content_filter: Optional[ContentFilter] = None,
        moderation: Optional[ModerationAdapter] = None,
        assessment: Optional[AssessmentTrigger] = None,
        audit: Optional[AuditLog] = None,
        default_country: str = DEFAULT_COUNTRY,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.composer = composer
        self.streamer = streamer
        self.responder = responder
        self.default_model = default_model
        self.classifier = classifier or SafetyClassifier()
        self.content_filter = content_filter
        self.moderation = moderation
        self.assessment = assessment
        self.audit = audit
        self.default_country = normalize_country_code(default_country)
        self.rng = rng or random.Random()

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        store: MessageStore,
        feed: RealtimeFeed,
        *,
        provider: Optional[LLMProvider] = None,
        notifier: Optional[TeacherNotifier] = None,
        moderation: Optional[ModerationAdapter] = None,
        retrieval: Optional[RetrievalAdapter] = None,
        grader: Optional[GradingClient] = None,
    ) -> "MessageOrchestrator":
        """Wire every stage from configuration; explicit collaborators win."""
        provider = provider or get_provider(config.llm)
        notifier = notifier or build_notifier(config.safety.alert_webhook_url)
        audit = build_audit_log(config.safety.audit_log_path)

        if moderation is None:
            moderation_config = config.moderation
            if moderation_config.enabled and moderation_config.api_key is None:
                logger.warning("No moderation API key configured; using local jailbreak checks only")
                moderation_config = moderation_config.model_copy(update={"enabled": False})
            moderation = ModerationAdapter(moderation_config, notifier=notifier)

        if retrieval is None and config.retrieval.enabled and config.retrieval.embedding_api_key:
            retrieval = RetrievalAdapter(config.retrieval)

        if grader is None and config.assessment.grading_url:
            key = config.assessment.grading_api_key
            grader = HttpGradingClient(
                config.assessment.grading_url,
                api_key=key.get_secret_value() if key else None,
            )

        memory = None
        if config.memory.enabled:
            memory = MemoryService(
                MemoryStore(config.memory.store_dir),
                MemorySummarizer(provider, config.memory.summary_model),
                config.memory,
            )

        content_filter = None
        if config.content_filter.enabled:
            content_filter = ContentFilter(
                strict_mode=config.content_filter.strict_mode,
                allowed_link_domains=config.content_filter.allowed_link_domains,
            )

        return cls(
            store,
            ContextComposer(store, config.context, retrieval=retrieval, memory=memory),
            StreamingCompletion(provider, store, config.streaming),
            SafetyResponder(store, feed, notifier, config.safety, provider=provider, audit=audit),
            default_model=config.llm.model,
            content_filter=content_filter,
            moderation=moderation,
            assessment=AssessmentTrigger(store, grader, config.assessment) if grader else None,
            audit=audit,
            default_country=config.context.default_country,
        )

    @property
    def memory(self) -> Optional[MemoryService]:
        return self.composer.memory

    async def close(self) -> None:
        await self.streamer.provider.close()
        if self.moderation is not None:
            await self.moderation.close()
        if self.composer.retrieval is not None:
            await self.composer.retrieval.close()
        if self.assessment is not None:
            close = getattr(self.assessment.grader, "close", None)
            if close is not None:
                await close()

    # -------------------------------------------------------------------------
    # Gate
    # -------------------------------------------------------------------------

    async def run_gate(
        self,
        content: str,
        author: Author,
        room_id: str,
        finding: Optional[SafetyFinding] = None,
        moderation: Optional[ModerationResult] = None,
    ) -> GateDecision:
        """
        Classifier, content filter and moderation, in that order.

        A precomputed ``finding`` skips the classifier and a precomputed
        ``moderation`` result is reused instead of calling the service again.
        """
        if finding is None:
            finding = self.classifier.classify(content)
        decision = GateDecision(finding=finding)
        trace = decision.trace

        if finding.concern and finding.concern_type is not None:
            logger.info(f"Safety concern ({finding.concern_type.value}) detected for {author.id}")
            trace.append(Concern(Stage.SAFETY, finding.concern_type))
        else:
            trace.append(Passed(Stage.SAFETY))

        if finding.concern:
            trace.append(Skipped(Stage.CONTENT_FILTER, "safety concern"))
        elif not author.is_student:
            trace.append(Skipped(Stage.CONTENT_FILTER, "not a student"))
        elif self.content_filter is None:
            trace.append(Skipped(Stage.CONTENT_FILTER, "disabled"))
        else:
            result = self.content_filter.check(content, is_minor=author.is_minor)
            decision.filter_result = result
            if result.blocked:
                trace.append(
                    Blocked(
                        Stage.CONTENT_FILTER,
                        BlockKind.CONTENT,
                        result.reason or "Content filtered",
                        tuple(result.flagged_patterns),
                    )
                )
                trace.append(Skipped(Stage.MODERATION, "blocked by content filter"))
                return decision
            trace.append(Passed(Stage.CONTENT_FILTER))

        if not author.is_student:
            trace.append(Skipped(Stage.MODERATION, "not a student"))
        elif self.moderation is None:
            trace.append(Skipped(Stage.MODERATION, "disabled"))
        else:
            result = moderation or await self.moderation.moderate(content, author_id=author.id, room_id=room_id)
            decision.moderation = result
            if result.flagged and finding.concern:
                logger.info(f"Moderation flag for {author.id} overridden by safety concern")
                trace.append(Passed(Stage.MODERATION, note="flag overridden by safety concern"))
            elif result.flagged:
                trace.append(
                    Blocked(
                        Stage.MODERATION,
                        BlockKind.MODERATION,
                        result.reason or "Content flagged for review",
                        tuple(result.categories),
                    )
                )
            else:
                trace.append(Passed(Stage.MODERATION, note=result.reason if result.service_failed else None))

        for outcome in trace:
            logger.debug(f"Gate {outcome.stage.value}: {type(outcome).__name__}")
        return decision

    # -------------------------------------------------------------------------
    # Turn
    # -------------------------------------------------------------------------

    def check_access(self, room: Room, tutor: TutorProfile, author: Author) -> None:
        if is_test_room(room.id):
            if not author.is_teacher or author.id != room.teacher_id:
                raise AuthError("Only the owning teacher can use a test room", status_code=403)
        elif author.is_teacher:
            if author.id != room.teacher_id:
                raise AuthError("Not authorized for this room", status_code=403)
        elif author.id not in room.member_ids:
            raise AuthError("Not authorized for this room", status_code=403)

        if room.tutor_ids and tutor.id not in room.tutor_ids:
            raise NotFoundError("Tutor is not available in this room")

    async def _resolve_instance(
        self, request: TurnRequest, author: Author, room: Room, tutor: TutorProfile
    ) -> Optional[str]:
        if not author.is_student:
            return request.instance_id
        if request.instance_id:
            instance = await self.store.get_instance(request.instance_id)
            if instance is not None and (instance.author_id, instance.tutor_id, instance.room_id) == (
                author.id,
                tutor.id,
                room.id,
            ):
                return instance.id
            logger.warning(f"Ignoring instance {request.instance_id} not owned by {author.id}")
        instance = await self.store.get_or_create_instance(room.id, author.id, tutor.id)
        return instance.id

    async def _persist_user_message(
        self,
        request: TurnRequest,
        author: Author,
        tutor: TutorProfile,
        instance_id: Optional[str],
        content: str,
    ) -> ChatMessage:
        if request.message_id:
            existing = await self.store.get_message(request.message_id)
            if existing is not None:
                logger.debug(f"Message {existing.id} already persisted; reusing it")
                return existing

        message = ChatMessage(
            id=request.message_id or new_id(),
            room_id=request.room_id,
            author_id=author.id,
            role=Role.USER,
            content=content,
            conversation_instance_id=instance_id,
            metadata={Meta.CHATBOT_ID: tutor.id},
        )
        try:
            return await self.store.insert_message(message)
        except ValueError:
            existing = await self.store.get_message(message.id)
            if existing is None:
                raise
            return existing

    async def handle(self, request: TurnRequest, author: Author) -> TurnOutcome:
        """
        Run one turn.

        Raises:
            ValidationError: Empty content or missing tutor id
            NotFoundError: Unknown room or tutor
            AuthError: The author may not post in the room
            CompletionStreamError: The completion service failed before streaming
        """
        content = (request.content or "").strip()
        if not content:
            raise ValidationError("Message content cannot be empty")
        if not request.tutor_id:
            raise ValidationError("Tutor id is required")

        room = await self.store.get_room(request.room_id)
        if room is None:
            raise NotFoundError("Room not found")
        tutor = await self.store.get_tutor(request.tutor_id)
        if tutor is None:
            raise NotFoundError("Tutor not found")
        self.check_access(room, tutor, author)

        instance_id = await self._resolve_instance(request, author, room, tutor)
        owner = await self.store.get_author(room.teacher_id)
        country_code = resolve_country_code(request.country_code, author, owner)
        if country_code == DEFAULT_COUNTRY:
            country_code = self.default_country

        triggered = self.assessment is not None and self.assessment.is_trigger(content, tutor, author)
        finding = self.classifier.classify(content)
        retrieval: Optional[asyncio.Task[list[Passage]]] = None
        if not triggered and not finding.concern and tutor.enable_rag and self.composer.retrieval is not None:
            retrieval = asyncio.create_task(self.composer.fetch_passages(content, tutor))

        try:
            decision = await self.run_gate(content, author, room.id, finding=finding)
        except BaseException:
            if retrieval is not None:
                retrieval.cancel()
            raise

        if decision.blocked is not None or triggered:
            if retrieval is not None:
                retrieval.cancel()
                retrieval = None

        blocked = decision.blocked
        if blocked is not None:
            return await self._block(blocked, decision, request, author, room, tutor, instance_id, content)

        message = await self._persist_user_message(request, author, tutor, instance_id, content)

        if decision.finding.concern:
            safety = await self.responder.respond(
                message,
                decision.finding,
                room,
                author,
                tutor_id=tutor.id,
                country_code=country_code,
            )
            if safety is not None:
                return SafetyInterventionResult(
                    message_id=message.id,
                    room_id=room.id,
                    user_id=author.id,
                    country_code=country_code,
                    safety=safety,
                    trace=decision.trace,
                )

            # Not confirmed: the turn goes through the rest of the gate as an ordinary message.
            decision = await self.run_gate(
                content, author, room.id, finding=SafetyFinding.clear(), moderation=decision.moderation
            )
            decision.trace[0] = Passed(Stage.SAFETY, note="concern not confirmed")
            blocked = decision.blocked
            if blocked is not None:
                await self.store.delete_message(message.id)
                return await self._block(blocked, decision, request, author, room, tutor, instance_id, content)
            if tutor.enable_rag and self.composer.retrieval is not None:
                retrieval = asyncio.create_task(self.composer.fetch_passages(content, tutor))

        if triggered and self.assessment is not None:
            task = await self.assessment.dispatch(message, tutor)
            return AssessmentPendingResult(message_id=message.id, task=task, trace=decision.trace)

        passages = await retrieval if retrieval is not None else None
        model = request.model or tutor.model or self.default_model
        context = await self.composer.compose(
            message,
            tutor,
            author,
            room,
            model=model,
            country_code=country_code,
            passages=passages,
        )
        assistant_id, frames = await self.streamer.start(context, tutor, message, model=model)
        return StreamingResult(
            message_id=message.id,
            assistant_message_id=assistant_id,
            frames=frames,
            trace=decision.trace,
        )

    async def _block(
        self,
        blocked: Blocked,
        decision: GateDecision,
        request: TurnRequest,
        author: Author,
        room: Room,
        tutor: TutorProfile,
        instance_id: Optional[str],
        content: str,
    ) -> BlockedResult:
        """Persist the redirect as a system message and record the block."""
        if blocked.kind == BlockKind.CONTENT:
            text = kind_filter_message(blocked.reason)
            marker = Meta.IS_CONTENT_FILTER
        else:
            moderation = decision.moderation or ModerationResult(flagged=True)
            text = kind_moderation_message(
                moderation.categories, moderation.severity, moderation.jailbreak_detected, self.rng
            )
            marker = Meta.IS_MODERATION

        notice = await self.store.insert_message(
            ChatMessage(
                room_id=room.id,
                author_id=author.id,
                role=Role.SYSTEM,
                content=text,
                conversation_instance_id=instance_id,
                metadata={Meta.CHATBOT_ID: tutor.id, marker: True},
            )
        )
        logger.info(f"Turn from {author.id} in {room.id} blocked ({blocked.kind.value}): {blocked.reason}")

        self_harm = is_self_harm_text(content)
        if blocked.kind == BlockKind.CONTENT and not self_harm:
            await self.store.log_filtered_content(
                FilteredContentRecord(
                    author_id=author.id,
                    room_id=room.id,
                    original_content=content[:AUDIT_CONTENT_CHARS],
                    filter_reason=blocked.reason,
                    flagged_patterns=list(blocked.flagged_patterns),
                    tutor_id=tutor.id,
                )
            )
        elif blocked.kind == BlockKind.MODERATION and decision.moderation is not None:
            flag = build_moderation_flag(
                decision.moderation,
                message_id=request.message_id or notice.id,
                author_id=author.id,
                room_id=room.id,
                teacher_id=room.teacher_id,
            )
            if flag is not None:
                await self.store.insert_flag(flag)

        if self.audit is not None and not self_harm:
            await self.audit.record(
                blocked.kind.value,
                author_id=author.id,
                room_id=room.id,
                tutor_id=tutor.id,
                reason=blocked.reason,
                patterns=list(blocked.flagged_patterns),
            )

        return BlockedResult(
            kind=blocked.kind,
            reason=blocked.reason,
            message=text,
            system_message_id=notice.id,
            trace=decision.trace,
        )
