"""
Bearer-token authentication.

Identity management lives outside this service; an ``Authenticator``
only maps an opaque token to an ``Author`` known to the store.
"""

import logging
from typing import Mapping, Optional, Protocol

from classroom_tutor.models import Author
from classroom_tutor.pipeline.errors import AuthError
from classroom_tutor.store import MessageStore

logger = logging.getLogger(__name__)


class Authenticator(Protocol):
    async def authenticate(self, token: str) -> Optional[Author]: ...


class TokenAuthenticator:
    """Static token table, resolved against the store's authors."""

    def __init__(self, tokens: Mapping[str, str], store: MessageStore):
        self.tokens = dict(tokens)
        self.store = store

    async def authenticate(self, token: str) -> Optional[Author]:
        author_id = self.tokens.get(token)
        if author_id is None:
            return None
        return await self.store.get_author(author_id)


def parse_bearer(header: Optional[str]) -> str:
    """
    Extract the token from an ``Authorization`` header.

    Raises:
        AuthError: The header is missing or not a bearer credential
    """
    if not header:
        raise AuthError("Authentication required")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Authentication required")
    return token.strip()


async def resolve_author(authenticator: Authenticator, header: Optional[str]) -> Author:
    author = await authenticator.authenticate(parse_bearer(header))
    if author is None:
        logger.info("Rejected request with unknown token")
        raise AuthError("Authentication required")
    return author
