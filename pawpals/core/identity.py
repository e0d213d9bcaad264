from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Union

@dataclass(frozen=True)
class MemberIdentity:
    """Signed-in user. Only members reach the visit services."""
    user_id: str
    role: str = "user"

@dataclass(frozen=True)
class GuestIdentity:
    """Browsing without an account; has no visits."""

Identity = Union[MemberIdentity, GuestIdentity]

def identity_from_claims(claims: Dict[str, Any]) -> Identity:
    if claims.get("role") == "guest":
        return GuestIdentity()
    return MemberIdentity(user_id=str(claims["sub"]), role=str(claims.get("role", "user")))
