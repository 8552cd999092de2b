"""
Invoice arithmetic and payment.

Amounts are :class:`~decimal.Decimal` rounded half-up to two places.
Tax applies to the discounted subtotal::

    tax   = (subtotal - discount) * tax_rate
    total = subtotal - discount + tax
"""
from __future__ import annotations

import secrets
import string
import time
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from clinic.exceptions import Conflict
from clinic.models import Invoice, InvoiceItem

CENTS = Decimal('0.01')
_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def default_tax_rate() -> Decimal:
    return Decimal(str(settings.BILLING_TAX_RATE))


def generate_invoice_number() -> str:
    suffix = ''.join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(5))
    return f'INV-{int(time.time() * 1000)}-{suffix}'


def compute_totals(items: Iterable[dict[str, Any]], discount=0, tax_rate=None) -> dict[str, Decimal]:
    rate = default_tax_rate() if tax_rate is None else Decimal(str(tax_rate))
    subtotal = sum((money(i['unit_price']) * int(i.get('quantity', 1)) for i in items), Decimal('0'))
    discount = money(discount or 0)
    if discount > subtotal:
        raise ValidationError({'discount': ['Discount cannot exceed the subtotal.']})
    tax = money((subtotal - discount) * rate)
    return {
        'subtotal': money(subtotal),
        'discount': discount,
        'tax_rate': rate,
        'tax': tax,
        'total': money(subtotal - discount + tax),
    }


@transaction.atomic
def create_invoice(*, patient, items: list[dict[str, Any]], discount=0, tax_rate=None, notes: str = '',
                   created_by=None, due_date=None) -> Invoice:
    if not items:
        raise ValidationError({'items': ['At least one item is required.']})
    totals = compute_totals(items, discount, tax_rate)
    invoice = Invoice.objects.create(
        center_id=patient.center_id,
        patient=patient,
        invoice_number=generate_invoice_number(),
        due_date=due_date or timezone.now() + timedelta(days=settings.INVOICE_DUE_DAYS),
        notes=notes,
        created_by=created_by,
        **totals,
    )
    InvoiceItem.objects.bulk_create([
        InvoiceItem(
            invoice=invoice,
            description=i['description'],
            quantity=int(i.get('quantity', 1)),
            unit_price=money(i['unit_price']),
            total_price=money(money(i['unit_price']) * int(i.get('quantity', 1))),
        )
        for i in items
    ])
    return invoice


def mark_paid(invoice_id: int, *, payment_method: str = 'cash') -> Invoice:
    with transaction.atomic():
        invoice = Invoice.objects.select_for_update().get(pk=invoice_id)
        if invoice.status not in Invoice.UNPAID_STATUSES:
            raise Conflict(f'Invoice is {invoice.status} and cannot be paid.')
        invoice.status = Invoice.STATUS_PAID
        invoice.paid_at = timezone.now()
        invoice.payment_method = payment_method
        invoice.save(update_fields=['status', 'paid_at', 'payment_method', 'updated_at'])
    return invoice


def cancel_invoice(invoice: Invoice) -> Invoice:
    if invoice.status == Invoice.STATUS_PAID:
        raise Conflict('Paid invoices cannot be cancelled.')
    if invoice.status != Invoice.STATUS_CANCELLED:
        invoice.status = Invoice.STATUS_CANCELLED
        invoice.save(update_fields=['status', 'updated_at'])
    return invoice


def refresh_overdue(qs=None) -> int:
    """Flag pending invoices past their due date as overdue."""
    qs = Invoice.objects.all() if qs is None else qs
    return qs.filter(status=Invoice.STATUS_PENDING, due_date__lt=timezone.now()).update(
        status=Invoice.STATUS_OVERDUE
    )


def summarize(qs, since: Optional[Any] = None) -> dict[str, Any]:
    if since is not None:
        qs = qs.filter(created_at__gte=since)
    agg = qs.aggregate(
        count=Count('id'),
        paid_count=Count('id', filter=Q(status=Invoice.STATUS_PAID)),
        pending_count=Count('id', filter=Q(status=Invoice.STATUS_PENDING)),
        overdue_count=Count('id', filter=Q(status=Invoice.STATUS_OVERDUE)),
        revenue=Sum('total', filter=Q(status=Invoice.STATUS_PAID)),
        outstanding=Sum('total', filter=Q(status__in=Invoice.UNPAID_STATUSES)),
    )
    agg['revenue'] = float(agg['revenue'] or 0)
    agg['outstanding'] = float(agg['outstanding'] or 0)
    return agg
