"""
Identity Gate for the Account Lifecycle Engine.

Decides whether a requester may trigger a lifecycle transition for a
target identity. A requester may always act on itself; acting on someone
else requires the admin group.
"""

import logging
from enum import Enum
from typing import Iterable, Optional, Union

from ..models import Group

logger = logging.getLogger(__name__)

UNAUTHORIZED_MESSAGE = "unauthorized"
ALREADY_PAID_MESSAGE = "already a paid member"


class Decision(str, Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"


class GateDecision:
    """Outcome of a gate check. Truthy when allowed."""

    def __init__(self, decision: Decision, reason: Optional[str] = None):
        self.decision = decision
        self.reason = reason

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOW

    def __bool__(self):
        return self.allowed

    def __eq__(self, other) -> bool:
        if isinstance(other, Decision):
            return self.decision == other
        if isinstance(other, GateDecision):
            return (self.decision, self.reason) == (other.decision, other.reason)
        return NotImplemented

    def __repr__(self):
        return f"GateDecision({self.decision.value}, reason={self.reason!r})"


ALLOW = GateDecision(Decision.ALLOW)


class IdentityGate:
    """Authorization and transition precondition checks."""

    def __init__(self, elevated_group: Union[Group, str] = Group.ADMIN):
        self.elevated_group = _group_value(elevated_group)

    def authorize(self, requester_identity: str, requester_groups: Iterable[str],
                  target_identity: str) -> GateDecision:
        """
        Authorize a requester against a target identity.

        Args:
            requester_identity: Authenticated identity id of the caller
            requester_groups: Group claims presented by the caller
            target_identity: Identity the transition would act on

        Returns:
            ALLOW for self-service or elevated callers, DENY otherwise
        """
        if requester_identity == target_identity:
            return ALLOW

        if self.elevated_group in set(requester_groups or []):
            logger.info(f"{requester_identity} acting on {target_identity} with elevated role")
            return ALLOW

        logger.warning(f"Denied {requester_identity} acting on {target_identity}")
        return GateDecision(Decision.DENY, UNAUTHORIZED_MESSAGE)

    def check_transition(self, presented_groups: Iterable[str],
                         destination_group: Union[Group, str]) -> GateDecision:
        """
        Deny a transition whose destination group is already held.

        Evaluated against the caller's presented group claims rather than
        a directory read, so it can be stale.
        """
        destination = _group_value(destination_group)
        if destination in set(presented_groups or []):
            reason = ALREADY_PAID_MESSAGE if destination == Group.PAID.value \
                else f"already a member of {destination}"
            return GateDecision(Decision.DENY, reason)
        return ALLOW


def _group_value(group: Union[Group, str]) -> str:
    return group.value if isinstance(group, Group) else group
