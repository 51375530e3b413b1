"""
Transition rule table.

Maps each target status to the statuses it may be entered from and the
location proof (if any) needed to confirm it.  A request for the current
status is always legal: it is a heartbeat, not a transition.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .enums import BookingStatus as S
from .enums import LocationTarget
from .errors import WorkflowError, invalid_transition


@dataclass(frozen=True)
class TransitionRule:
    allowed_from: frozenset[S]
    require_location: Optional[LocationTarget] = None


def _rule(*allowed_from: S, location: Optional[LocationTarget] = None) -> TransitionRule:
    return TransitionRule(frozenset(allowed_from), location)


STATUS_RULES: dict[S, TransitionRule] = {
    S.DRIVER_ASSIGNED: _rule(S.PENDING),
    S.ACCEPTED: _rule(S.PENDING, S.DRIVER_ASSIGNED),
    S.DRIVER_ENROUTE: _rule(S.DRIVER_ASSIGNED, S.ACCEPTED),
    # Drivers who accept while already standing at the pickup skip enroute
    S.DRIVER_ARRIVED: _rule(
        S.DRIVER_ASSIGNED, S.DRIVER_ENROUTE, S.ACCEPTED,
        location=LocationTarget.PICKUP,
    ),
    S.PICKED_UP: _rule(
        S.DRIVER_ARRIVED, S.DRIVER_ENROUTE, S.ACCEPTED,
        location=LocationTarget.PICKUP,
    ),
    S.IN_TRANSIT: _rule(S.PICKED_UP),
    S.AT_DROPOFF: _rule(S.IN_TRANSIT, location=LocationTarget.DROPOFF),
    # Only reachable through complete_delivery / confirm_payment
    S.DELIVERED: _rule(S.AT_DROPOFF, S.IN_TRANSIT, location=LocationTarget.DROPOFF),
    S.MONEY_COLLECTION: _rule(S.DELIVERED),
    S.COMPLETED: _rule(S.MONEY_COLLECTION, S.DELIVERED),
}


def rule_for(status: S) -> Optional[TransitionRule]:
    return STATUS_RULES.get(status)


def is_transition_allowed(current: S, requested: S) -> bool:
    if current == requested:
        return True
    rule = STATUS_RULES.get(requested)
    return rule is not None and current in rule.allowed_from


def check_transition(current: S, requested: S) -> Optional[WorkflowError]:
    """Return ``None`` if legal, else an ``INVALID_STATE_TRANSITION`` error."""
    if is_transition_allowed(current, requested):
        return None
    return invalid_transition(current.value, requested.value)


def allowed_targets(current: S) -> list[S]:
    """Statuses reachable from *current* in one step (for client hints)."""
    return [target for target, rule in STATUS_RULES.items() if current in rule.allowed_from]
