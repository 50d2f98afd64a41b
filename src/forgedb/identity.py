"""Caller identity passed explicitly to routines that need it.

The schema's ``get_current_user_id()`` and ``is_user_authenticated()``
read the requesting user from the database session. Python callers pass a
:class:`CallerIdentity` instead, so the same checks can run (and be tested)
without a live auth context.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass


class NotAuthenticatedError(Exception):
    """Raised when an operation requires a user and none is present."""


@dataclass(frozen=True)
class CallerIdentity:
    user_id: uuid.UUID | None = None

    @classmethod
    def anonymous(cls) -> CallerIdentity:
        return cls(user_id=None)

    @classmethod
    def from_claim(cls, subject: str | None) -> CallerIdentity:
        """Build an identity from a token ``sub`` claim; blank or missing means anonymous.

        Raises ValueError if the claim is present but not a UUID.
        """
        if subject is None or not subject.strip():
            return cls.anonymous()
        return cls(user_id=uuid.UUID(subject.strip()))


def is_user_authenticated(identity: CallerIdentity) -> bool:
    return identity.user_id is not None


def get_current_user_id(identity: CallerIdentity) -> uuid.UUID:
    """Return the caller's user id or raise :class:`NotAuthenticatedError`."""
    if identity.user_id is None:
        raise NotAuthenticatedError("No authenticated user for this call")
    return identity.user_id
