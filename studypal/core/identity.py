"""
Caller identities for usage accounting.

An identity is either an anonymous browser/device or a signed-in user.
"""
from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Anonymous:
    """Unauthenticated caller, keyed by a client-generated device id."""
    device_id: str


@dataclass(frozen=True)
class Authenticated:
    """Signed-in caller, keyed by the auth provider's user id."""
    user_id: str
    email: Optional[str] = None


Identity = Union[Anonymous, Authenticated]


def describe_identity(identity: Identity) -> str:
    """Short label for log lines."""
    if isinstance(identity, Authenticated):
        return f"user_id={identity.user_id}"
    return f"device_id={identity.device_id}"
