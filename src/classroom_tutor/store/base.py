"""
Datastore contract consumed by the pipeline.

Any relational backend can sit behind this protocol; ``InMemoryStore`` is
the reference implementation used by the CLI and the tests.
"""

from datetime import datetime
from typing import Any, Iterable, Optional, Protocol

from classroom_tutor.models import (
    Author,
    ChatMessage,
    ConversationInstance,
    FilteredContentRecord,
    FlagRecord,
    Role,
    Room,
    TutorProfile,
)


class MessageStore(Protocol):
    async def get_room(self, room_id: str) -> Optional[Room]: ...

    async def get_tutor(self, tutor_id: str) -> Optional[TutorProfile]: ...

    async def get_author(self, author_id: str) -> Optional[Author]: ...

    async def insert_message(self, message: ChatMessage) -> ChatMessage: ...

    async def get_message(self, message_id: str) -> Optional[ChatMessage]: ...

    async def update_message(
        self,
        message_id: str,
        *,
        content: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[ChatMessage]:
        """Replace ``content`` and merge ``metadata`` keys into the row."""
        ...

    async def delete_message(self, message_id: str) -> bool: ...

    async def list_messages(
        self,
        room_id: str,
        *,
        instance_id: Optional[str] = None,
        author_id: Optional[str] = None,
        tutor_id: Optional[str] = None,
        roles: Optional[Iterable[Role]] = None,
        before: Optional[datetime] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        newest_first: bool = False,
    ) -> list[ChatMessage]: ...

    async def get_instance(self, instance_id: str) -> Optional[ConversationInstance]: ...

    async def get_or_create_instance(
        self, room_id: str, author_id: str, tutor_id: str
    ) -> ConversationInstance: ...

    async def insert_flag(self, flag: FlagRecord) -> tuple[FlagRecord, bool]:
        """Insert unless a flag for the same message and concern exists; returns (row, created)."""
        ...

    async def list_flags(self, *, room_id: Optional[str] = None) -> list[FlagRecord]: ...

    async def log_filtered_content(self, record: FilteredContentRecord) -> None: ...
