"""
Subscription status predicates.

A subscription has no stored status column: its state is derived from
``trial_ends_at``, ``ends_at`` and the current instant. Every consumer (the
ORM model, the services, the webhook reconciler) goes through these
functions.

A timestamp is "in the future" when it is strictly after ``now``; anything
at or before ``now`` is in the past, so a subscription cancelled with
``ends_at = now`` has already ended.
"""

from datetime import datetime
from enum import Enum

from dotmac.cashier.clock import ensure_utc


class SubscriptionState(str, Enum):
    """Lifecycle state derived from the subscription timestamps."""

    TRIALING = "trialing"
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    ENDED = "ended"


def _future(moment: datetime | None, now: datetime) -> bool:
    return moment is not None and ensure_utc(moment) > ensure_utc(now)


def on_trial(trial_ends_at: datetime | None, ends_at: datetime | None, now: datetime) -> bool:
    return _future(trial_ends_at, now)


def cancelled(trial_ends_at: datetime | None, ends_at: datetime | None, now: datetime) -> bool:
    return ends_at is not None


def on_grace_period(
    trial_ends_at: datetime | None, ends_at: datetime | None, now: datetime
) -> bool:
    return cancelled(trial_ends_at, ends_at, now) and _future(ends_at, now)


def ended(trial_ends_at: datetime | None, ends_at: datetime | None, now: datetime) -> bool:
    return cancelled(trial_ends_at, ends_at, now) and not _future(ends_at, now)


def active(trial_ends_at: datetime | None, ends_at: datetime | None, now: datetime) -> bool:
    return on_trial(trial_ends_at, ends_at, now) or ends_at is None or _future(ends_at, now)


def recurring(trial_ends_at: datetime | None, ends_at: datetime | None, now: datetime) -> bool:
    """Renews on its own: neither cancelled nor trialing."""
    return not cancelled(trial_ends_at, ends_at, now) and not on_trial(
        trial_ends_at, ends_at, now
    )


def valid(trial_ends_at: datetime | None, ends_at: datetime | None, now: datetime) -> bool:
    """Grants access. Same as ``active``; kept under the name callers expect."""
    return active(trial_ends_at, ends_at, now)


def state(
    trial_ends_at: datetime | None, ends_at: datetime | None, now: datetime
) -> SubscriptionState:
    if ended(trial_ends_at, ends_at, now):
        return SubscriptionState.ENDED
    if on_trial(trial_ends_at, ends_at, now):
        return SubscriptionState.TRIALING
    if on_grace_period(trial_ends_at, ends_at, now):
        return SubscriptionState.GRACE_PERIOD
    return SubscriptionState.ACTIVE


__all__ = [
    "SubscriptionState",
    "on_trial",
    "cancelled",
    "on_grace_period",
    "ended",
    "active",
    "recurring",
    "valid",
    "state",
]
