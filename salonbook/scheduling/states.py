"""Appointment status machine.

Every mutating lifecycle operation asks this table whether its action is
allowed from the appointment's current status. Adding a status or an edge
is a change to ``TRANSITIONS`` only.
"""

from __future__ import annotations

from salonbook.models.enums import AppointmentAction, AppointmentStatus
from salonbook.scheduling.errors import InvalidTransitionError

S = AppointmentStatus
A = AppointmentAction

# Transition map: {current_status: {action: next_status}}
TRANSITIONS: dict[AppointmentStatus, dict[AppointmentAction, AppointmentStatus]] = {
    S.BOOKED: {
        A.CONFIRM: S.CONFIRMED,
        A.CHECK_IN: S.CHECKED_IN,
        A.CANCEL: S.CANCELLED,
        A.MARK_NO_SHOW: S.NO_SHOW,
        A.RESCHEDULE: S.RESCHEDULED,
    },
    S.CONFIRMED: {
        A.CHECK_IN: S.CHECKED_IN,
        A.CANCEL: S.CANCELLED,
        A.MARK_NO_SHOW: S.NO_SHOW,
        A.RESCHEDULE: S.RESCHEDULED,
    },
    S.CHECKED_IN: {
        A.START: S.IN_PROGRESS,
        A.CANCEL: S.CANCELLED,
        A.RESCHEDULE: S.RESCHEDULED,
    },
    S.IN_PROGRESS: {
        A.COMPLETE: S.COMPLETED,
    },
    S.COMPLETED: {},
    S.CANCELLED: {},
    S.NO_SHOW: {},
    S.RESCHEDULED: {},
}

TERMINAL_STATUSES: frozenset[AppointmentStatus] = frozenset(
    status for status, edges in TRANSITIONS.items() if not edges
)


def allowed_actions(status: AppointmentStatus | str) -> list[AppointmentAction]:
    """Actions permitted from ``status``."""
    return list(TRANSITIONS.get(AppointmentStatus(status), {}))


def can_transition(status: AppointmentStatus | str, action: AppointmentAction) -> bool:
    return action in TRANSITIONS.get(AppointmentStatus(status), {})


def next_status(
    status: AppointmentStatus | str,
    action: AppointmentAction,
    *,
    entity_id: object = None,
) -> AppointmentStatus:
    """Resolve the status ``action`` leads to.

    Raises:
        InvalidTransitionError: If ``action`` is not allowed from ``status``.
    """
    current = AppointmentStatus(status)
    target = TRANSITIONS.get(current, {}).get(action)
    if target is None:
        raise InvalidTransitionError(action.value, current.value, entity_id=entity_id)
    return target


def is_terminal(status: AppointmentStatus | str) -> bool:
    return AppointmentStatus(status) in TERMINAL_STATUSES
