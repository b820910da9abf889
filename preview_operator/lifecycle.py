"""
Lifecycle state machine for PreviewEnvironment status.

    Pending ──► Creating ──► Ready
       │           │    ▲      │
       │           ▼    │      │
       └──────►  Failed ┘      │
                   │           │
                   ▼           ▼
                 Expiring ◄────┘   (TTL elapsed)

Failed is not terminal: the next pass whose convergence succeeds moves it to
Ready, the same as from Creating. Each failed pass retries after the retry
interval.

The functions here only mutate a status object in memory; persisting it is
the reconciler's job. Identity (namespace, URL) and timestamps are written by
``initialize`` and never touched again.
"""
from datetime import datetime, timedelta
from typing import Optional

from .identity import derive_namespace, derive_url
from .models import Condition, Phase, PreviewEnvironment, PreviewEnvironmentSpec, PreviewEnvironmentStatus

CONDITION_READY = "Ready"
CONDITION_EXPIRED = "Expired"

MESSAGE_CREATING = "Creating preview environment resources"
MESSAGE_READY = "Preview environment is ready"
MESSAGE_EXPIRED = "Environment has expired and is being cleaned up"


def set_condition(conditions: list, ctype: str, status: str, reason: str, message: str, now: datetime):
    """Upsert a condition. The transition time only moves when the status flips."""
    for c in conditions:
        if c.type == ctype:
            if c.status != status:
                c.last_transition_time = now
            c.status = status
            c.reason = reason
            c.message = message
            return
    conditions.append(Condition(
        type=ctype,
        status=status,
        reason=reason,
        message=message,
        last_transition_time=now,
    ))


def get_condition(status: PreviewEnvironmentStatus, ctype: str) -> Optional[Condition]:
    return next((c for c in status.conditions if c.type == ctype), None)


def ttl_hours(spec: PreviewEnvironmentSpec, default: int) -> int:
    """TTL in hours; unset or 0 falls back to the default. No range clamping."""
    return spec.ttl or default


def is_expired(status: PreviewEnvironmentStatus, now: datetime) -> bool:
    return status.expires_at is not None and now >= status.expires_at


def initialize(record: PreviewEnvironment, now: datetime, domain_suffix: str, default_ttl: int):
    """Pending → Creating. Assigns the record's permanent identity and expiry.

    Fields that are already set (a partially written status) are kept as they are.
    """
    status = record.status
    status.namespace = status.namespace or derive_namespace(record.spec)
    status.environment_url = status.environment_url or derive_url(record.spec, domain_suffix)
    status.created_at = status.created_at or now
    status.expires_at = status.expires_at or (
        status.created_at + timedelta(hours=ttl_hours(record.spec, default_ttl)))
    status.phase = Phase.CREATING
    status.message = MESSAGE_CREATING
    set_condition(status.conditions, CONDITION_READY, "False", "Creating", MESSAGE_CREATING, now)


def mark_ready(record: PreviewEnvironment, now: datetime) -> bool:
    """Creating/Failed → Ready. Returns False when nothing changed."""
    status = record.status
    if status.phase not in (Phase.CREATING, Phase.FAILED):
        return False
    status.phase = Phase.READY
    status.message = MESSAGE_READY
    set_condition(status.conditions, CONDITION_READY, "True", "ResourcesReady",
                  f"Serving at {status.environment_url}", now)
    return True


def mark_failed(record: PreviewEnvironment, error: Exception, now: datetime):
    status = record.status
    status.phase = Phase.FAILED
    status.message = f"Failed to create resources: {error}"
    set_condition(status.conditions, CONDITION_READY, "False", "ReconcileFailed", str(error)[:200], now)


def mark_expiring(record: PreviewEnvironment, now: datetime):
    status = record.status
    status.phase = Phase.EXPIRING
    status.message = MESSAGE_EXPIRED
    set_condition(status.conditions, CONDITION_EXPIRED, "True", "TTLElapsed",
                  f"Expired at {status.expires_at:%Y-%m-%dT%H:%M:%SZ}", now)
    set_condition(status.conditions, CONDITION_READY, "False", "Expiring", MESSAGE_EXPIRED, now)


def next_requeue(status: PreviewEnvironmentStatus, now: datetime, interval: timedelta) -> timedelta:
    """The regular interval, cut short when expiry comes first."""
    if status.expires_at is None:
        return interval
    remaining = status.expires_at - now
    return max(min(interval, remaining), timedelta(seconds=1))
