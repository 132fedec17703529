"""Bearer-token principal lookup.

Token issuance and verification belong to the account service; this module
only maps an already-issued bearer token to the principal id used for
ownership and for the creation rate limiter.
"""

from collections.abc import Mapping
from typing import Protocol

from shortener.errors import UnauthorizedError

__all__ = ["AuthVerifier", "StaticTokenVerifier", "bearer_token"]


class AuthVerifier(Protocol):
    async def principal_for(self, token: str) -> str: ...


class StaticTokenVerifier:
    """Verifier over a fixed token -> principal table (``API_TOKENS``)."""

    def __init__(self, tokens: Mapping[str, str]):
        self._tokens = dict(tokens)

    async def principal_for(self, token: str) -> str:
        principal = self._tokens.get(token)
        if principal is None:
            raise UnauthorizedError("Invalid token")
        return principal


def bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise UnauthorizedError("Missing bearer token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Invalid authorization header")
    return token.strip()
