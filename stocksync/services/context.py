"""Explicit per-call context: who is acting and against which store."""

from dataclasses import dataclass
from typing import Iterable, Optional

from ..store.base import LedgerStore
from ..utils.exceptions import ForbiddenError, UnauthorizedError


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as supplied by the auth collaborator."""

    id: str
    display_name: str
    role: str = "staff"


@dataclass(frozen=True)
class RequestContext:
    """Passed into every core operation instead of ambient globals."""

    store: LedgerStore
    actor: Optional[Actor] = None

    def require_actor(self) -> Actor:
        """
        Return the acting user.

        Raises:
            UnauthorizedError: If no valid actor is attached
        """
        if self.actor is None or not self.actor.id:
            raise UnauthorizedError("Unauthorized")
        return self.actor

    def require_role(self, allowed_roles: Iterable[str]) -> Actor:
        """
        Return the acting user if their role is allowed.

        Raises:
            UnauthorizedError: If no valid actor is attached
            ForbiddenError: If the actor's role is not in ``allowed_roles``
        """
        actor = self.require_actor()
        if actor.role not in allowed_roles:
            raise ForbiddenError(
                "Insufficient permissions",
                details={"role": actor.role}
            )
        return actor
