"""
In-process datastore.

All reads and writes go through one ``asyncio.Lock``. Rows are copied on the
way in and out so callers never mutate stored state by accident.
"""

import asyncio
import copy
import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from classroom_tutor.models import (
    Author,
    ChatMessage,
    ConversationInstance,
    FilteredContentRecord,
    FlagRecord,
    Meta,
    Role,
    Room,
    TutorProfile,
)
from classroom_tutor.realtime import INSERT_EVENT, RealtimeFeed, room_channel

logger = logging.getLogger(__name__)


class InMemoryStore:
    """
    Dictionary-backed ``MessageStore``.

    When a realtime feed is supplied every message insert is published on
    the room channel as an ``INSERT`` event.
    """

    def __init__(self, feed: Optional[RealtimeFeed] = None):
        self._lock = asyncio.Lock()
        self._feed = feed
        self._rooms: dict[str, Room] = {}
        self._tutors: dict[str, TutorProfile] = {}
        self._authors: dict[str, Author] = {}
        self._messages: dict[str, ChatMessage] = {}
        self._instances: dict[str, ConversationInstance] = {}
        self._flags: list[FlagRecord] = []
        self.filtered_content: list[FilteredContentRecord] = []

    # Seeding

    def add_room(self, room: Room) -> Room:
        self._rooms[room.id] = room
        return room

    def add_tutor(self, tutor: TutorProfile) -> TutorProfile:
        self._tutors[tutor.id] = tutor
        return tutor

    def add_author(self, author: Author) -> Author:
        self._authors[author.id] = author
        return author

    # Profiles

    async def get_room(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    async def get_tutor(self, tutor_id: str) -> Optional[TutorProfile]:
        return self._tutors.get(tutor_id)

    async def get_author(self, author_id: str) -> Optional[Author]:
        return self._authors.get(author_id)

    # Messages

    async def insert_message(self, message: ChatMessage) -> ChatMessage:
        async with self._lock:
            if message.id in self._messages:
                raise ValueError(f"Message {message.id} already exists")
            stored = copy.deepcopy(message)
            self._messages[stored.id] = stored
        logger.debug(f"Inserted {message.role.value} message {message.id} in room {message.room_id}")
        if self._feed is not None:
            await self._feed.publish(room_channel(message.room_id), INSERT_EVENT, message.to_dict())
        return copy.deepcopy(stored)

    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        async with self._lock:
            message = self._messages.get(message_id)
            return copy.deepcopy(message) if message else None

    async def update_message(
        self,
        message_id: str,
        *,
        content: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[ChatMessage]:
        async with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                return None
            if content is not None:
                message.content = content
            if metadata:
                message.metadata.update(metadata)
            return copy.deepcopy(message)

    async def delete_message(self, message_id: str) -> bool:
        async with self._lock:
            return self._messages.pop(message_id, None) is not None

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
    ) -> list[ChatMessage]:
        wanted_roles = set(roles) if roles is not None else None
        async with self._lock:
            rows = [
                m
                for m in self._messages.values()
                if m.room_id == room_id
                and (instance_id is None or m.conversation_instance_id == instance_id)
                and (author_id is None or m.author_id == author_id)
                and (tutor_id is None or m.metadata.get(Meta.CHATBOT_ID) == tutor_id)
                and (wanted_roles is None or m.role in wanted_roles)
                and (before is None or m.created_at < before)
                and (since is None or m.created_at >= since)
            ]
            rows.sort(key=lambda m: m.created_at, reverse=newest_first)
            if limit is not None:
                rows = rows[:limit]
            return [copy.deepcopy(m) for m in rows]

    # Conversation instances

    async def get_instance(self, instance_id: str) -> Optional[ConversationInstance]:
        return self._instances.get(instance_id)

    async def get_or_create_instance(
        self, room_id: str, author_id: str, tutor_id: str
    ) -> ConversationInstance:
        async with self._lock:
            for instance in self._instances.values():
                if (instance.room_id, instance.author_id, instance.tutor_id) == (
                    room_id,
                    author_id,
                    tutor_id,
                ):
                    return instance
            instance = ConversationInstance(room_id=room_id, author_id=author_id, tutor_id=tutor_id)
            self._instances[instance.id] = instance
        logger.info(f"Created conversation instance {instance.id} for {author_id}/{tutor_id}")
        return instance

    # Audit rows

    async def insert_flag(self, flag: FlagRecord) -> tuple[FlagRecord, bool]:
        async with self._lock:
            for existing in self._flags:
                if existing.message_id == flag.message_id and existing.concern_type == flag.concern_type:
                    return existing, False
            self._flags.append(flag)
            return flag, True

    async def list_flags(self, *, room_id: Optional[str] = None) -> list[FlagRecord]:
        return [f for f in self._flags if room_id is None or f.room_id == room_id]

    async def log_filtered_content(self, record: FilteredContentRecord) -> None:
        async with self._lock:
            self.filtered_content.append(record)

    @property
    def message_count(self) -> int:
        return len(self._messages)
