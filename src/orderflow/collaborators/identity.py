"""Bearer-token identity resolution.

Session issuance is someone else's job; this service only needs to turn a
token into a user id and an admin flag.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from orderflow.errors import Unauthorized

SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class Identity:
    user_id: str
    is_admin: bool = False

    @property
    def actor(self) -> str:
        return f"{'admin' if self.is_admin else 'customer'}:{self.user_id}"


class IdentityResolver(ABC):
    @abstractmethod
    def resolve(self, token: str | None) -> Identity:
        """Return the identity behind ``token`` or raise Unauthorized."""
        ...


class StaticTokenResolver(IdentityResolver):
    """Resolves tokens from a fixed table: ``{token: "user_id"}`` or ``"user_id:admin"``."""

    def __init__(self, tokens: dict[str, str]):
        self.tokens = dict(tokens)

    def resolve(self, token: str | None) -> Identity:
        if not token:
            raise Unauthorized("Authentication required")
        entry = self.tokens.get(token)
        if entry is None:
            raise Unauthorized("Invalid or expired token")
        user_id, _, role = entry.partition(":")
        return Identity(user_id=user_id, is_admin=role == "admin")
