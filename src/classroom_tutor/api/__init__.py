"""HTTP surface."""

from classroom_tutor.api.app import SSE_HEADERS, create_app
from classroom_tutor.api.auth import Authenticator, TokenAuthenticator, parse_bearer, resolve_author
from classroom_tutor.api.schemas import ChatRequest, MemoryRequest, MemoryTurn

__all__ = [
    "create_app",
    "SSE_HEADERS",
    "Authenticator",
    "TokenAuthenticator",
    "parse_bearer",
    "resolve_author",
    "ChatRequest",
    "MemoryRequest",
    "MemoryTurn",
]
