"""
Reception queue and the reception to doctor hand-off.

Queue numbers restart every day per center.  Numbering and every status
change run inside ``transaction.atomic`` with the relevant rows locked,
so two desks checking patients in at once never share a number.

``confirm_to_doctor`` is the gate between reception and the clinician:
it verifies payment or insurance (see :mod:`clinic.services.payments`)
and only then creates the :class:`~clinic.models.PatientVisit` that makes
the patient visible to the doctor.
"""
from __future__ import annotations

import logging
from typing import Optional

from django.db import transaction
from django.db.models import Max
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from clinic.exceptions import Conflict
from clinic.models import Center, Patient, PatientVisit, QueueItem, User
from clinic.permissions import scope_to_center
from clinic.services import notifications, realtime
from clinic.services.audit import log_action
from clinic.services.payments import VerificationResult, verify_payment
from clinic.services.transitions import can_transition
from clinic.services.workflows import run_event_workflows

logger = logging.getLogger(__name__)


class VerificationFailed(Exception):
    """Payment/insurance gate refused the hand-off."""

    def __init__(self, result: VerificationResult):
        super().__init__(result.reason)
        self.result = result


def serialize_queue_item(item: QueueItem) -> dict:
    return {
        'id': item.id,
        'center_id': item.center_id,
        'queue_number': item.queue_number,
        'queue_date': item.queue_date.isoformat(),
        'status': item.status,
        'priority': item.priority,
        'service_type': item.service_type,
        'notes': item.notes,
        'patient_id': item.patient_id,
        'patient_name': item.patient.name if item.patient_id else '',
        'patient_phone': item.patient.phone if item.patient_id else '',
        'appointment_id': item.appointment_id,
        'doctor_id': item.doctor_id,
        'doctor_name': item.doctor.display_name if item.doctor_id else None,
        'checked_in_at': item.checked_in_at.isoformat() if item.checked_in_at else None,
        'called_at': item.called_at.isoformat() if item.called_at else None,
        'confirmed_to_doctor_at': item.confirmed_to_doctor_at.isoformat() if item.confirmed_to_doctor_at else None,
        'completed_at': item.completed_at.isoformat() if item.completed_at else None,
    }


def add_to_queue(user: User, *, patient: Patient, appointment=None, doctor: Optional[User] = None,
                 priority: str = 'normal', service_type: str = '', notes: str = '') -> QueueItem:
    today = timezone.localdate()
    with transaction.atomic():
        # serialise numbering per center
        Center.objects.select_for_update().filter(pk=patient.center_id).first()
        active = QueueItem.objects.filter(
            center_id=patient.center_id, patient=patient, queue_date=today,
            status__in=QueueItem.ACTIVE_STATUSES,
        )
        if active.exists():
            raise Conflict('Patient is already in today\'s queue.')
        last = QueueItem.objects.filter(center_id=patient.center_id, queue_date=today).aggregate(
            m=Max('queue_number')
        )['m'] or 0
        item = QueueItem.objects.create(
            center_id=patient.center_id,
            patient=patient,
            appointment=appointment,
            doctor=doctor,
            queue_date=today,
            queue_number=last + 1,
            status=QueueItem.STATUS_CHECKED_IN,
            priority=priority,
            service_type=service_type or (appointment.appointment_type if appointment else ''),
            notes=notes,
            checked_in_at=timezone.now(),
        )
    log_action(user=user, action='queue_add', entity_type='queue_item', entity_id=item.id,
               detail={'patient_id': patient.id, 'queue_number': item.queue_number})
    realtime.broadcast(item.center_id, 'queue.added', {'queueItemId': item.id, 'queueNumber': item.queue_number})
    return item


def update_queue_item(user: User, item_id: int, *, status: Optional[str] = None, priority: Optional[str] = None,
                      notes: Optional[str] = None, doctor: Optional[User] = None) -> QueueItem:
    qs = scope_to_center(QueueItem.objects.all(), user)
    with transaction.atomic():
        item = qs.select_for_update().filter(pk=item_id).first()
        if item is None:
            raise NotFound('Queue item not found')
        fields: list[str] = []
        if status and status != item.status:
            if status == QueueItem.STATUS_IN_PROGRESS:
                raise ValidationError({'status': ['Use confirm-to-doctor to start a visit.']})
            if not can_transition('queue_item', item.status, status):
                raise Conflict(f'Cannot change queue status from {item.status} to {status}.')
            previous = item.status
            item.status = status
            fields.append('status')
            if status == QueueItem.STATUS_COMPLETED:
                item.completed_at = timezone.now()
                fields.append('completed_at')
            logger.info('Queue item %s: %s -> %s', item.id, previous, status)
        if priority:
            item.priority = priority
            fields.append('priority')
        if notes is not None:
            item.notes = notes
            fields.append('notes')
        if doctor is not None:
            if doctor.center_id != item.center_id:
                raise ValidationError({'doctor_id': ['Doctor belongs to another center.']})
            item.doctor = doctor
            fields.append('doctor')
        if fields:
            item.save(update_fields=fields)
    if fields:
        log_action(user=user, action='queue_update', entity_type='queue_item', entity_id=item.id,
                   detail={'fields': fields, 'status': item.status})
        realtime.broadcast(item.center_id, 'queue.updated', {'queueItemId': item.id, 'status': item.status})
    return item


def confirm_to_doctor(user: User, item_id: int, *, doctor_id: int, notes: str = '') -> tuple[PatientVisit, VerificationResult]:
    """Hand a checked-in patient over to ``doctor_id``.

    Raises ``NotFound`` (item outside the caller's center),
    ``ValidationError`` (unknown doctor), ``Conflict`` (item not waiting)
    or :class:`VerificationFailed` (payment gate).
    """
    qs = scope_to_center(QueueItem.objects.all(), user)
    with transaction.atomic():
        item = qs.select_for_update().filter(pk=item_id).first()
        if item is None:
            raise NotFound('Queue item not found')
        doctor = User.objects.filter(
            pk=doctor_id, role=User.ROLE_DOCTOR, is_active=True, center_id=item.center_id,
        ).first()
        if doctor is None:
            raise ValidationError({'doctor_id': ['Doctor not found in this center.']})
        if item.status not in (QueueItem.STATUS_CHECKED_IN, QueueItem.STATUS_WAITING):
            raise Conflict(f'Queue item is {item.status} and cannot be confirmed.')

        appointment = item.appointment
        session_type = appointment.appointment_type if appointment else 'consultation'
        result = verify_payment(
            item.patient,
            session_type=session_type,
            service_type=item.service_type or None,
            role='reception',
        )
        if not result.can_proceed:
            raise VerificationFailed(result)

        now = timezone.now()
        item.status = QueueItem.STATUS_IN_PROGRESS
        item.called_at = now
        item.confirmed_to_doctor_at = now
        item.doctor = doctor
        item.save(update_fields=['status', 'called_at', 'confirmed_to_doctor_at', 'doctor'])
        visit = PatientVisit.objects.create(
            center_id=item.center_id,
            patient=item.patient,
            appointment=appointment,
            queue_item=item,
            doctor=doctor,
            confirmed_by=user,
            visit_date=now,
            check_in_time=item.checked_in_at,
            confirmed_to_doctor_time=now,
            status=PatientVisit.STATUS_CONFIRMED,
            notes=notes,
        )
        notifications.notify(
            doctor, 'patient_confirmed_to_doctor',
            {'patient_name': item.patient.name, 'queue_number': item.queue_number},
            patient=item.patient, entity_type='patient_visit', entity_id=visit.id,
        )

    log_action(user=user, action='confirm_to_doctor', entity_type='patient_visit', entity_id=visit.id,
               detail={'queue_item_id': item.id, 'doctor_id': doctor.id, 'reason': result.reason})
    realtime.broadcast(item.center_id, 'visit.confirmed', {
        'queueItemId': item.id, 'visitId': visit.id, 'doctorId': doctor.id, 'status': item.status,
    })
    run_event_workflows(
        'visit.confirmed', center_id=item.center_id, entity_type='patient_visit', entity_id=visit.id,
        context={'patient_id': item.patient_id, 'patient_name': item.patient.name, 'doctor_id': doctor.id,
                 'user_id': doctor.id, 'queue_number': item.queue_number},
        triggered_by=user,
    )
    return visit, result


def update_visit_status(user: User, visit: PatientVisit, new_status: str) -> PatientVisit:
    """Move a visit along its lifecycle and keep the queue entry in step."""
    with transaction.atomic():
        visit = PatientVisit.objects.select_for_update().get(pk=visit.pk)
        if not can_transition('patient_visit', visit.status, new_status):
            raise Conflict(f'Cannot change visit status from {visit.status} to {new_status}.')
        now = timezone.now()
        visit.status = new_status
        fields = ['status']
        if new_status == PatientVisit.STATUS_IN_PROGRESS:
            visit.started_at = now
            fields.append('started_at')
        elif new_status == PatientVisit.STATUS_COMPLETED:
            visit.completed_at = now
            fields.append('completed_at')
        visit.save(update_fields=fields)
        if visit.queue_item_id and new_status in (PatientVisit.STATUS_COMPLETED, PatientVisit.STATUS_CANCELLED):
            QueueItem.objects.filter(pk=visit.queue_item_id, status=QueueItem.STATUS_IN_PROGRESS).update(
                status=QueueItem.STATUS_COMPLETED if new_status == PatientVisit.STATUS_COMPLETED
                else QueueItem.STATUS_CANCELLED,
                completed_at=now,
            )
    log_action(user=user, action='visit_status', entity_type='patient_visit', entity_id=visit.id,
               detail={'status': new_status})
    realtime.broadcast(visit.center_id, 'visit.updated', {'visitId': visit.id, 'status': new_status})
    return visit
