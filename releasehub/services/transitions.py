"""
Deployment status transition table.

Every (current, requested) pair is listed. ALLOWED maps to the resulting
status; anything else carries the reason it is rejected.
"""
from releasehub.exceptions import InvalidStateError, ValidationError
from releasehub.models.deployment import DeploymentStatus as S


ALLOWED = "allowed"

_TERMINAL = "Deployment is already {current} and can no longer change"
_NO_REVERT = "A deployment cannot return to Pending"
_NOT_CONFIRMED = "Deployment must be confirmed (InProgress) before it can be marked {requested}"
_ALREADY_STARTED = "Only pending deployments can be moved to InProgress"

TRANSITIONS: dict[tuple[S, S], str] = {
    (S.PENDING, S.PENDING): _NO_REVERT,
    (S.PENDING, S.IN_PROGRESS): ALLOWED,
    (S.PENDING, S.SUCCESS): _NOT_CONFIRMED,
    (S.PENDING, S.FAILED): _NOT_CONFIRMED,
    (S.PENDING, S.CANCELLED): ALLOWED,

    (S.IN_PROGRESS, S.PENDING): _NO_REVERT,
    (S.IN_PROGRESS, S.IN_PROGRESS): _ALREADY_STARTED,
    (S.IN_PROGRESS, S.SUCCESS): ALLOWED,
    (S.IN_PROGRESS, S.FAILED): ALLOWED,
    (S.IN_PROGRESS, S.CANCELLED): ALLOWED,

    (S.SUCCESS, S.PENDING): _TERMINAL,
    (S.SUCCESS, S.IN_PROGRESS): _TERMINAL,
    (S.SUCCESS, S.SUCCESS): _TERMINAL,
    (S.SUCCESS, S.FAILED): _TERMINAL,
    (S.SUCCESS, S.CANCELLED): _TERMINAL,

    (S.FAILED, S.PENDING): _TERMINAL,
    (S.FAILED, S.IN_PROGRESS): _TERMINAL,
    (S.FAILED, S.SUCCESS): _TERMINAL,
    (S.FAILED, S.FAILED): _TERMINAL,
    (S.FAILED, S.CANCELLED): _TERMINAL,

    (S.CANCELLED, S.PENDING): _TERMINAL,
    (S.CANCELLED, S.IN_PROGRESS): _TERMINAL,
    (S.CANCELLED, S.SUCCESS): _TERMINAL,
    (S.CANCELLED, S.FAILED): _TERMINAL,
    (S.CANCELLED, S.CANCELLED): _TERMINAL,
}


def parse_status(value: str | S) -> S:
    """Accept the boundary string form ("InProgress") or the enum."""
    if isinstance(value, S):
        return value
    try:
        return S(value)
    except ValueError:
        raise ValidationError(
            f"Unknown deployment status: {value!r}",
            allowed=[s.value for s in S],
        ) from None


def resolve_transition(current: S, requested: S) -> S:
    """Return the new status or raise InvalidStateError."""
    outcome = TRANSITIONS[(current, requested)]
    if outcome != ALLOWED:
        raise InvalidStateError(
            outcome.format(current=current.value, requested=requested.value),
            current=current.value,
            requested=requested.value,
        )
    return requested


def allowed_targets(current: S) -> list[S]:
    return [requested for (state, requested), outcome in TRANSITIONS.items()
            if state == current and outcome == ALLOWED]
