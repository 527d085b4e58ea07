"""Request bodies of the HTTP surface."""

from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from classroom_tutor.models import Role


class ChatRequest(BaseModel):
    # Empty values reach the orchestrator so they are reported as 400s.
    content: str = Field(default="", description="Message text")
    tutor_id: str = Field(
        default="",
        validation_alias=AliasChoices("tutor_id", "chatbot_id"),
        description="Tutor the message is addressed to",
    )
    instance_id: Optional[str] = Field(default=None, description="Conversation instance")
    model: Optional[str] = Field(default=None, description="Completion model override")
    country_code: Optional[str] = Field(default=None, description="Country for helplines and spelling")
    message_id: Optional[str] = Field(default=None, description="Id of an already persisted message")


class MemoryTurn(BaseModel):
    role: Role
    content: str


class MemoryRequest(BaseModel):
    tutor_id: str = Field(validation_alias=AliasChoices("tutor_id", "chatbot_id"))
    room_id: Optional[str] = None
    tutor_name: str = Field(default="Assistant")
    messages: list[MemoryTurn] = Field(default_factory=list)
