"""Type definitions for access control."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable


class Operation(Enum):
    """The kind of operation being authorized."""

    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    RUN_ACTION = "runAction"


@dataclass(frozen=True)
class Principal:
    """The actor issuing a request.

    Attributes:
        roles: Role identifiers held by the actor
        user_id: Identity used for snapshot attribution, if known
    """

    roles: frozenset[str] = field(default_factory=frozenset)
    user_id: str | None = None

    @classmethod
    def of(cls, *roles: str, user_id: str | None = None) -> "Principal":
        return cls(roles=frozenset(roles), user_id=user_id)

    @classmethod
    def from_roles(cls, roles: Iterable[str] | None, user_id: str | None = None) -> "Principal":
        return cls(roles=frozenset(r for r in (roles or ()) if r), user_id=user_id)

    @property
    def actor(self) -> str:
        return self.user_id or "anonymous"

    def has_any(self, roles: Iterable[str]) -> bool:
        return not self.roles.isdisjoint(roles)


@dataclass
class TokenClaims:
    """Claims embedded in a JWT token.

    Attributes:
        user_id: The authenticated user's ID
        roles: Role identifiers granted by the token
        exp: Token expiration timestamp
        iat: Token issued-at timestamp
    """

    user_id: str
    roles: list[str] = field(default_factory=list)
    exp: int = 0
    iat: int = 0

    def to_principal(self) -> Principal:
        return Principal.from_roles(self.roles, user_id=self.user_id or None)

    def to_dict(self) -> dict[str, Any]:
        return {"sub": self.user_id, "roles": list(self.roles), "exp": self.exp, "iat": self.iat}
