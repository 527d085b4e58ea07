"""JSON-lines audit trail of safety flags and blocks."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

from classroom_tutor.models import utcnow

logger = logging.getLogger(__name__)


class AuditLog:
    """
    Appends one JSON object per line.

    Each entry has ``timestamp`` and ``kind`` (``safety_flag``,
    ``content_blocked`` or ``moderation_blocked``) plus caller fields.
    Write failures are logged; auditing never interrupts a message turn.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    async def record(self, kind: str, **fields: Any) -> None:
        entry = {"timestamp": utcnow().isoformat(), "kind": kind, **fields}
        line = json.dumps(entry, ensure_ascii=False, default=str)
        async with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                logger.error(f"Failed to write audit entry to {self.path}: {e}")

    def read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        entries = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if line.strip():
                entries.append(json.loads(line))
        return entries


def build_audit_log(path: Optional[str]) -> Optional[AuditLog]:
    return AuditLog(path) if path else None
