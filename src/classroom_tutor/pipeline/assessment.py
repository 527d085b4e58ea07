"""
Assessment trigger.

A student sending the reserved command to an assessment tutor hands the
last few turns to the grading service. Grading runs as a background task
with a bounded retry loop; the HTTP caller has already been acknowledged,
so a final failure becomes a system message in the transcript.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx

from classroom_tutor.config import AssessmentConfig
from classroom_tutor.models import Author, ChatMessage, Meta, Role, TutorProfile
from classroom_tutor.pipeline.errors import AssessmentDispatchError
from classroom_tutor.store import MessageStore

logger = logging.getLogger(__name__)

ASSESSMENT_ERROR_MESSAGE = (
    "Assessment processing encountered an error. Please try again or contact your "
    "teacher if the problem persists."
)


class GradingClient(Protocol):
    async def submit(
        self,
        *,
        student_id: str,
        tutor_id: str,
        room_id: str,
        message_ids: list[str],
    ) -> None:
        """Raises on any failure; returning means the grader accepted the work."""
        ...


class HttpGradingClient:
    """POSTs grading requests to the assessment service."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.api_key = api_key
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def submit(
        self,
        *,
        student_id: str,
        tutor_id: str,
        room_id: str,
        message_ids: list[str],
    ) -> None:
        headers = {
            "Content-Type": "application/json",
            "x-assessment-source": "internal-trigger",
            "x-request-id": f"assess-{student_id}-{int(time.time() * 1000)}",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {
            "student_id": student_id,
            "chatbot_id": tutor_id,
            "room_id": room_id,
            "message_ids_to_assess": message_ids,
        }
        try:
            response = await self._get_client().post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise AssessmentDispatchError(f"Grading request failed: {e}") from e
        if response.status_code >= 400:
            raise AssessmentDispatchError(
                f"Grading service returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class AssessmentTrigger:
    """Detects the trigger command and runs grading in the background."""

    def __init__(
        self,
        store: MessageStore,
        grader: GradingClient,
        config: Optional[AssessmentConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.grader = grader
        self.config = config or AssessmentConfig()
        self._sleep = sleep
        self._tasks: set[asyncio.Task[bool]] = set()

    def is_trigger(self, content: str, tutor: TutorProfile, author: Author) -> bool:
        return (
            author.is_student
            and tutor.is_assessment
            and content.strip().lower() == self.config.trigger.lower()
        )

    async def gather_context(self, message: ChatMessage, tutor_id: str) -> list[str]:
        """Ids of the last ``context_count`` prior turns, oldest first."""
        rows = await self.store.list_messages(
            message.room_id,
            instance_id=message.conversation_instance_id,
            author_id=message.author_id,
            tutor_id=tutor_id,
            roles=[Role.USER, Role.ASSISTANT],
            before=message.created_at,
            limit=self.config.context_count + 1,
            newest_first=True,
        )
        rows = [r for r in rows if r.id != message.id and r.content.strip()][: self.config.context_count]
        rows.reverse()
        return [r.id for r in rows]

    async def dispatch(self, message: ChatMessage, tutor: TutorProfile) -> "asyncio.Task[bool]":
        """Start grading in the background and return the task."""
        message_ids = await self.gather_context(message, tutor.id)
        logger.info(
            f"Assessment triggered by {message.author_id} in {message.room_id} "
            f"with {len(message_ids)} message(s)"
        )
        task = asyncio.create_task(self._run(message, tutor.id, message_ids))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, message: ChatMessage, tutor_id: str, message_ids: list[str]) -> bool:
        attempts = self.config.max_retries + 1
        last_error = ""
        for attempt in range(attempts):
            try:
                await asyncio.wait_for(
                    self.grader.submit(
                        student_id=message.author_id,
                        tutor_id=tutor_id,
                        room_id=message.room_id,
                        message_ids=message_ids,
                    ),
                    timeout=self.config.attempt_timeout,
                )
                logger.info(f"Assessment accepted for {message.author_id} (attempt {attempt + 1})")
                return True
            except asyncio.TimeoutError:
                last_error = f"Timed out after {self.config.attempt_timeout:g}s"
            except Exception as e:
                last_error = str(e) or type(e).__name__

            logger.warning(f"Assessment attempt {attempt + 1}/{attempts} failed: {last_error}")
            if attempt < attempts - 1:
                await self._sleep(self.config.backoff_base * 2**attempt)

        logger.error(f"Assessment for {message.author_id} failed after {attempts} attempt(s)")
        await self._report_failure(message, tutor_id, last_error)
        return False

    async def _report_failure(self, message: ChatMessage, tutor_id: str, detail: str) -> None:
        try:
            await self.store.insert_message(
                ChatMessage(
                    room_id=message.room_id,
                    author_id=message.author_id,
                    role=Role.SYSTEM,
                    content=ASSESSMENT_ERROR_MESSAGE,
                    conversation_instance_id=message.conversation_instance_id,
                    metadata={
                        Meta.CHATBOT_ID: tutor_id,
                        Meta.IS_ASSESSMENT_ERROR: True,
                        Meta.ERROR_DETAILS: detail,
                    },
                )
            )
        except Exception:
            logger.exception(f"Could not write the assessment failure message for {message.id}")

    async def wait_idle(self) -> None:
        """Wait for running grading tasks."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
