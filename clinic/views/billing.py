"""
Invoices and payments.

Totals are always computed server side by :mod:`clinic.services.billing`.
Paying an invoice notifies the patient's account and fires the
``invoice.paid`` event workflows.  Deleting an unpaid invoice cancels
it; paid invoices are immutable.
"""
from __future__ import annotations

from datetime import timedelta

from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated

from ..exceptions import Conflict
from ..models import Invoice, User
from ..permissions import permission_required
from ..responses import ok, paginated
from ..serializers.billing import InvoiceCreateSerializer, InvoiceUpdateSerializer, PaySerializer
from ..serializers.common import ListQuerySerializer
from ..services import billing as billing_service
from ..services import notifications, realtime
from ..services.audit import log_action
from ..services.patients import visible_patients
from ..services.workflows import run_event_workflows

PERIODS = {'today': 0, 'week': 7, 'month': 30}


def serialize_invoice(inv: Invoice, *, with_items: bool = False) -> dict:
    data = {
        'id': inv.id,
        'center_id': inv.center_id,
        'invoice_number': inv.invoice_number,
        'patient_id': inv.patient_id,
        'patient_name': inv.patient.name,
        'subtotal': float(inv.subtotal),
        'discount': float(inv.discount),
        'tax_rate': float(inv.tax_rate),
        'tax': float(inv.tax),
        'total': float(inv.total),
        'status': inv.status,
        'due_date': inv.due_date.isoformat() if inv.due_date else None,
        'paid_at': inv.paid_at.isoformat() if inv.paid_at else None,
        'payment_method': inv.payment_method,
        'notes': inv.notes,
        'created_at': inv.created_at.isoformat(),
    }
    if with_items:
        data['items'] = [
            {
                'id': i.id,
                'description': i.description,
                'quantity': i.quantity,
                'unit_price': float(i.unit_price),
                'total_price': float(i.total_price),
            }
            for i in inv.items.order_by('id')
        ]
    return data


def _visible_invoices(user: User):
    return Invoice.objects.select_related('patient').filter(patient__in=visible_patients(user))


def _get_invoice(user: User, pk: int) -> Invoice:
    invoice = _visible_invoices(user).filter(pk=pk).first()
    if invoice is None:
        raise NotFound('Invoice not found')
    return invoice


def _paid(request, invoice: Invoice) -> None:
    log_action(user=request.user, action='invoice_paid', entity_type='invoice', entity_id=invoice.id,
               detail={'amount': float(invoice.total), 'method': invoice.payment_method}, request=request)
    patient = invoice.patient
    if patient.user_id:
        notifications.notify(patient.user, 'payment_received',
                             {'amount': invoice.total, 'invoice_number': invoice.invoice_number},
                             patient=patient, entity_type='invoice', entity_id=invoice.id)
    realtime.broadcast(invoice.center_id, 'invoice.paid', {'invoiceId': invoice.id, 'patientId': patient.id})
    run_event_workflows('invoice.paid', center_id=invoice.center_id, entity_type='invoice', entity_id=invoice.id,
                        triggered_by=request.user,
                        context={'patient_id': patient.id, 'patient_name': patient.name, 'phone': patient.phone,
                                 'invoice_number': invoice.invoice_number, 'amount': str(invoice.total)})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, permission_required('billing:read', 'billing:create')])
def invoices(request):
    user: User = request.user  # type: ignore[assignment]
    if request.method == 'GET':
        q = ListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = _visible_invoices(user)
        billing_service.refresh_overdue(qs)
        if q.validated_data.get('status'):
            qs = qs.filter(status=q.validated_data['status'])
        patient_id = request.query_params.get('patient_id')
        if patient_id and patient_id.isdigit():
            qs = qs.filter(patient_id=int(patient_id))
        if q.validated_data.get('search'):
            qs = qs.filter(invoice_number__icontains=q.validated_data['search'])
        return paginated(qs.order_by('-created_at', '-id'), serialize_invoice,
                         page=q.validated_data['page'], limit=q.validated_data['limit'])

    s = InvoiceCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    patient = visible_patients(user).filter(pk=vd['patient_id']).first()
    if patient is None:
        raise NotFound('Patient not found')
    invoice = billing_service.create_invoice(
        patient=patient, items=vd['items'], discount=vd['discount'], tax_rate=vd.get('tax_rate'),
        notes=vd.get('notes', ''), created_by=user,
    )
    log_action(user=user, action='invoice_create', entity_type='invoice', entity_id=invoice.id,
               detail={'total': float(invoice.total)}, request=request)
    if patient.user_id:
        notifications.notify(patient.user, 'payment_due',
                             {'amount': invoice.total, 'invoice_number': invoice.invoice_number},
                             patient=patient, entity_type='invoice', entity_id=invoice.id)
    invoice = Invoice.objects.select_related('patient').get(pk=invoice.pk)
    return ok(serialize_invoice(invoice, with_items=True), message='Invoice created',
              status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated, permission_required('billing:read', 'billing:update')])
def invoice_detail(request, pk: int):
    invoice = _get_invoice(request.user, pk)
    if request.method == 'GET':
        return ok(serialize_invoice(invoice, with_items=True))

    if request.method == 'DELETE':
        billing_service.cancel_invoice(invoice)
        log_action(user=request.user, action='invoice_cancel', entity_type='invoice', entity_id=invoice.id,
                   request=request)
        return ok(serialize_invoice(invoice), message='Invoice cancelled')

    s = InvoiceUpdateSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    vd = dict(s.validated_data)
    new_status = vd.pop('status', None)
    if new_status == invoice.status:
        new_status = None
    if (vd or new_status) and invoice.status in (Invoice.STATUS_PAID, Invoice.STATUS_CANCELLED):
        raise Conflict(f'Invoice is {invoice.status} and can no longer be changed.')
    for field, value in vd.items():
        setattr(invoice, field, value)
    if vd:
        invoice.save()

    if new_status == Invoice.STATUS_PAID:
        invoice = billing_service.mark_paid(invoice.pk, payment_method=vd.get('payment_method') or 'cash')
        invoice = _get_invoice(request.user, invoice.pk)
        _paid(request, invoice)
    elif new_status == Invoice.STATUS_CANCELLED:
        billing_service.cancel_invoice(invoice)
    elif new_status:
        invoice.status = new_status
        invoice.save(update_fields=['status', 'updated_at'])
    log_action(user=request.user, action='invoice_update', entity_type='invoice', entity_id=invoice.id,
               detail={'status': invoice.status}, request=request)
    return ok(serialize_invoice(invoice, with_items=True), message='Invoice updated')


@api_view(['POST'])
@permission_classes([IsAuthenticated, permission_required('billing:read', 'billing:process_payment')])
def pay_invoice(request, pk: int):
    invoice = _get_invoice(request.user, pk)
    s = PaySerializer(data=request.data)
    s.is_valid(raise_exception=True)
    billing_service.mark_paid(invoice.pk, payment_method=s.validated_data['payment_method'])
    invoice = _get_invoice(request.user, pk)
    _paid(request, invoice)
    return ok(serialize_invoice(invoice), message='Payment recorded')


@api_view(['GET'])
@permission_classes([IsAuthenticated, permission_required('billing:read')])
def summary(request):
    """Invoice counts and revenue; ``?period=today|week|month`` narrows the window."""
    qs = _visible_invoices(request.user)
    billing_service.refresh_overdue(qs)
    period = request.query_params.get('period')
    since = None
    if period in PERIODS:
        start = timezone.localtime().replace(hour=0, minute=0, second=0, microsecond=0)
        since = start - timedelta(days=PERIODS[period])
    data = billing_service.summarize(qs, since=since)
    data['period'] = period if period in PERIODS else 'all'
    return ok(data)
