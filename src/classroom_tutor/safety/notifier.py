"""
Teacher alert delivery.

Alerts are raised for verified safety concerns and when the moderation
service is unreachable. Delivery failures are logged and never interrupt the
message turn.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional, Protocol

import httpx

from classroom_tutor.models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class TeacherAlert:
    kind: str
    """``safety_concern`` or ``moderation_unavailable``."""

    room_id: str
    author_id: str
    teacher_id: Optional[str] = None
    message_id: Optional[str] = None
    concern_type: Optional[str] = None
    concern_level: Optional[int] = None
    explanation: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


class TeacherNotifier(Protocol):
    async def notify(self, alert: TeacherAlert) -> None: ...


class LoggingNotifier:
    """Writes alerts to the log; the default when no webhook is configured."""

    def __init__(self) -> None:
        self.sent: list[TeacherAlert] = []

    async def notify(self, alert: TeacherAlert) -> None:
        self.sent.append(alert)
        logger.warning(
            f"Teacher alert [{alert.kind}] room={alert.room_id} student={alert.author_id} "
            f"concern={alert.concern_type} level={alert.concern_level}"
        )


class WebhookNotifier:
    """POSTs alerts as JSON to a teacher-facing webhook."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def notify(self, alert: TeacherAlert) -> None:
        try:
            response = await self._get_client().post(self.url, json=alert.to_dict())
            if response.status_code >= 400:
                logger.error(f"Teacher alert webhook returned {response.status_code}: {response.text[:200]}")
        except httpx.HTTPError as e:
            logger.error(f"Teacher alert webhook failed: {e}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_notifier(webhook_url: Optional[str]) -> TeacherNotifier:
    if webhook_url:
        return WebhookNotifier(webhook_url)
    return LoggingNotifier()
