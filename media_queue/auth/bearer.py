"""Interconnect bearer validation dependency for FastAPI."""

from typing import Optional
from uuid import UUID

from fastapi import Header

from media_queue.auth.interconnect import InterconnectTrust
from media_queue.errors import ErrorKind

# Set by main.py during lifespan
_trust: Optional[InterconnectTrust] = None


def set_trust(trust: Optional[InterconnectTrust]) -> None:
    global _trust
    _trust = trust


async def verify_interconnect(authorization: Optional[str] = Header(None)) -> UUID:
    """Validate the peer service's token from the Authorization header.

    Returns the UUID recovered from the token.
    """
    if not authorization:
        raise ErrorKind.UNAUTHORIZED.msg("Missing authorization token")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise ErrorKind.UNAUTHORIZED.msg("Missing authorization token")

    if _trust is None:
        raise ErrorKind.SERVER.msg("Interconnect trust not initialized")
    return _trust.verify(token.strip())
