"""
Status transition tables for appointments, queue items and visits.

Queue items only reach ``in_progress`` through confirm-to-doctor, so the
queue table below never lists it as a target.
"""
from __future__ import annotations

from clinic.models import Appointment, PatientVisit, QueueItem

APPOINTMENT_TRANSITIONS = {
    Appointment.STATUS_PENDING: [Appointment.STATUS_CONFIRMED, Appointment.STATUS_CANCELLED],
    Appointment.STATUS_CONFIRMED: [Appointment.STATUS_COMPLETED, Appointment.STATUS_CANCELLED],
    Appointment.STATUS_COMPLETED: [],
    Appointment.STATUS_CANCELLED: [],
}

QUEUE_TRANSITIONS = {
    QueueItem.STATUS_CHECKED_IN: [QueueItem.STATUS_WAITING, QueueItem.STATUS_CANCELLED, QueueItem.STATUS_NO_SHOW],
    QueueItem.STATUS_WAITING: [QueueItem.STATUS_CHECKED_IN, QueueItem.STATUS_CANCELLED, QueueItem.STATUS_NO_SHOW],
    QueueItem.STATUS_IN_PROGRESS: [QueueItem.STATUS_COMPLETED, QueueItem.STATUS_CANCELLED],
    QueueItem.STATUS_COMPLETED: [],
    QueueItem.STATUS_CANCELLED: [],
    QueueItem.STATUS_NO_SHOW: [],
}

VISIT_TRANSITIONS = {
    PatientVisit.STATUS_CONFIRMED: [PatientVisit.STATUS_IN_PROGRESS, PatientVisit.STATUS_CANCELLED],
    PatientVisit.STATUS_IN_PROGRESS: [PatientVisit.STATUS_COMPLETED, PatientVisit.STATUS_CANCELLED],
    PatientVisit.STATUS_COMPLETED: [],
    PatientVisit.STATUS_CANCELLED: [],
}

TABLES = {
    'appointment': APPOINTMENT_TRANSITIONS,
    'queue_item': QUEUE_TRANSITIONS,
    'patient_visit': VISIT_TRANSITIONS,
}


def can_transition(entity: str, current: str, new: str) -> bool:
    """Return True if ``entity`` may move from ``current`` to ``new``."""
    return new in TABLES[entity].get(current, [])
