"""
Enrollment status lifecycle

    created → sent → opened → processing → paid

failed / expired / canceled are reachable from every non-terminal state.
Regeneration is the only path back to created and is handled separately
(see can_regenerate).
"""

from enum import Enum


class EnrollmentStatus(str, Enum):
    CREATED = "created"
    SENT = "sent"
    OPENED = "opened"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELED = "canceled"


# Statuses from which the link itself is still usable by the patient
ACTIVE_STATUSES = frozenset(
    {EnrollmentStatus.CREATED, EnrollmentStatus.SENT, EnrollmentStatus.OPENED}
)

TERMINAL_STATUSES = frozenset(
    {
        EnrollmentStatus.PAID,
        EnrollmentStatus.FAILED,
        EnrollmentStatus.EXPIRED,
        EnrollmentStatus.CANCELED,
    }
)

NON_REGENERABLE_STATUSES = frozenset({EnrollmentStatus.PAID, EnrollmentStatus.PROCESSING})

_EXITS = (EnrollmentStatus.FAILED, EnrollmentStatus.EXPIRED, EnrollmentStatus.CANCELED)

VALID_TRANSITIONS: dict[EnrollmentStatus, frozenset] = {
    EnrollmentStatus.CREATED: frozenset(
        {
            EnrollmentStatus.SENT,
            EnrollmentStatus.OPENED,
            EnrollmentStatus.PROCESSING,
            EnrollmentStatus.PAID,
            *_EXITS,
        }
    ),
    EnrollmentStatus.SENT: frozenset(
        {
            EnrollmentStatus.OPENED,
            EnrollmentStatus.PROCESSING,
            EnrollmentStatus.PAID,
            *_EXITS,
        }
    ),
    EnrollmentStatus.OPENED: frozenset(
        {EnrollmentStatus.PROCESSING, EnrollmentStatus.PAID, *_EXITS}
    ),
    EnrollmentStatus.PROCESSING: frozenset({EnrollmentStatus.PAID, *_EXITS}),
    EnrollmentStatus.PAID: frozenset(),
    EnrollmentStatus.FAILED: frozenset(),
    EnrollmentStatus.EXPIRED: frozenset(),
    EnrollmentStatus.CANCELED: frozenset(),
}


def validate_status_transition(current_status: str, new_status: str) -> bool:
    """Return True if current_status → new_status is a legal forward move"""
    try:
        current = EnrollmentStatus(current_status)
        new = EnrollmentStatus(new_status)
    except ValueError:
        return False
    return new in VALID_TRANSITIONS[current]


def source_statuses_for(new_status: str, restrict_to=None) -> list[str]:
    """
    Statuses a row may currently hold for a guarded update to new_status.

    restrict_to narrows the set further (e.g. expiry only leaves ACTIVE_STATUSES).
    """
    target = EnrollmentStatus(new_status)
    sources = [s for s, targets in VALID_TRANSITIONS.items() if target in targets]
    if restrict_to is not None:
        allowed = {EnrollmentStatus(s) for s in restrict_to}
        sources = [s for s in sources if s in allowed]
    return sorted(s.value for s in sources)


def can_regenerate(current_status: str) -> bool:
    return EnrollmentStatus(current_status) not in NON_REGENERABLE_STATUSES


def is_active(status: str) -> bool:
    return status in {s.value for s in ACTIVE_STATUSES}


# CRM-facing label for each status; the only field this service owns in the CRM
CRM_STATUS_LABELS = {
    EnrollmentStatus.CREATED.value: "Created",
    EnrollmentStatus.SENT.value: "Sent",
    EnrollmentStatus.OPENED.value: "Opened",
    EnrollmentStatus.PROCESSING.value: "Processing",
    EnrollmentStatus.PAID.value: "Paid",
    EnrollmentStatus.FAILED.value: "Failed",
    EnrollmentStatus.EXPIRED.value: "Expired",
    EnrollmentStatus.CANCELED.value: "Canceled",
}
