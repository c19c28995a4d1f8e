"""
Pure ledger arithmetic.

Nothing in this module touches the database or the clock. Inputs are model
instances or any objects exposing the same attribute names, so the functions can
be called on prefetched querysets as well as on plain test doubles.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from .exceptions import ExceedsNetPayment, NonPositiveAmount, NonRefundableItem


ZERO = Decimal('0.00')
CENT = Decimal('0.01')
# 0.01 of the minor unit. Amounts are cent-quantized, so a one-cent
# difference is always larger than this.
MONEY_EPSILON = Decimal('0.0001')
LINE_ITEM_TOLERANCE = Decimal('0.01')

STATUS_UNPAID = 'UNPAID'
STATUS_PARTIAL = 'PARTIAL'
STATUS_PAID = 'PAID'
STATUS_OVERPAID = 'OVERPAID'
PAYMENT_STATUS_CHOICES = (
    (STATUS_UNPAID, 'Unpaid'),
    (STATUS_PARTIAL, 'Partial'),
    (STATUS_PAID, 'Paid'),
    (STATUS_OVERPAID, 'Overpaid'),
)

ADJUSTMENT_DISCOUNT = 'DISCOUNT'
ADJUSTMENT_ADDITIONAL = 'ADDITIONAL'


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value or '0'))


def quantize_money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _sum(values) -> Decimal:
    return sum((to_decimal(value) for value in values), ZERO)


@dataclass(frozen=True)
class LedgerSnapshot:
    base_fee: Decimal
    optional_due: Decimal
    total_discounts: Decimal
    total_additions: Decimal
    total_adjustments: Decimal
    total_due: Decimal
    gross_paid: Decimal
    total_refunded: Decimal
    total_paid: Decimal
    balance: Decimal
    payment_status: str
    has_fee_template: bool
    last_payment_date: date | None = None
    is_late_payment: bool = False
    late_since: datetime | None = None
    revision: int = 0

    @property
    def is_settled(self):
        return self.payment_status in {STATUS_PAID, STATUS_OVERPAID}

    def as_dict(self):
        return asdict(self)


def derive_payment_status(total_paid, total_due) -> str:
    total_paid = to_decimal(total_paid)
    total_due = to_decimal(total_due)

    if abs(total_paid) <= MONEY_EPSILON:
        return STATUS_UNPAID
    if total_paid - total_due > MONEY_EPSILON:
        return STATUS_OVERPAID
    if total_paid - total_due >= -MONEY_EPSILON:
        return STATUS_PAID
    return STATUS_PARTIAL


def compute_ledger(
    fee_template,
    optional_fee_assignments,
    payments,
    refunds,
    adjustments,
    *,
    is_late_payment=False,
    late_since=None,
    revision=0,
) -> LedgerSnapshot:
    payments = list(payments)
    adjustments = list(adjustments)

    base_fee = to_decimal(fee_template.total_amount) if fee_template is not None else ZERO
    optional_due = _sum(assignment.amount for assignment in optional_fee_assignments)
    discounts = _sum(
        adjustment.amount for adjustment in adjustments
        if adjustment.adjustment_type == ADJUSTMENT_DISCOUNT
    )
    additions = _sum(
        adjustment.amount for adjustment in adjustments
        if adjustment.adjustment_type == ADJUSTMENT_ADDITIONAL
    )
    total_due = base_fee + optional_due - discounts + additions

    gross_paid = _sum(payment.amount_paid for payment in payments)
    total_refunded = _sum(refund.amount for refund in refunds)
    total_paid = gross_paid - total_refunded
    if total_paid < 0:
        total_paid = ZERO

    payment_dates = [payment.payment_date for payment in payments if payment.payment_date]

    return LedgerSnapshot(
        base_fee=base_fee,
        optional_due=optional_due,
        total_discounts=discounts,
        total_additions=additions,
        total_adjustments=additions - discounts,
        total_due=total_due,
        gross_paid=gross_paid,
        total_refunded=total_refunded,
        total_paid=total_paid,
        balance=total_due - total_paid,
        payment_status=derive_payment_status(total_paid, total_due),
        has_fee_template=fee_template is not None,
        last_payment_date=max(payment_dates) if payment_dates else None,
        is_late_payment=bool(is_late_payment),
        late_since=late_since if is_late_payment else None,
        revision=revision,
    )


def allocated_by_breakdown(line_items, refunds) -> dict:
    """
    Net amount already paid against each breakdown id.

    Refunds on an itemized payment are spread over its line items in proportion
    to each item's share of the payment.
    """
    line_items = list(line_items)
    payment_totals = defaultdict(lambda: ZERO)
    for item in line_items:
        payment_totals[item.payment_id] += to_decimal(item.amount)

    refunded_by_payment = defaultdict(lambda: ZERO)
    for refund in refunds:
        refunded_by_payment[refund.payment_id] += to_decimal(refund.amount)

    allocated = defaultdict(lambda: ZERO)
    for item in line_items:
        amount = to_decimal(item.amount)
        payment_total = payment_totals[item.payment_id]
        refunded = refunded_by_payment.get(item.payment_id, ZERO)
        if refunded and payment_total > 0:
            amount -= refunded * amount / payment_total
        allocated[item.fee_breakdown_id] += amount
    return dict(allocated)


def refundable_balance(payment, existing_refunds) -> Decimal:
    return to_decimal(payment.amount_paid) - _sum(refund.amount for refund in existing_refunds)


def validate_refund(payment, existing_refunds, proposed_amount, breakdowns_touched) -> Decimal:
    """Approve a refund against its payment or raise the matching rejection."""
    proposed_amount = to_decimal(proposed_amount)
    net_paid = refundable_balance(payment, existing_refunds)

    if proposed_amount <= 0:
        raise NonPositiveAmount('Refund amount must be greater than zero.')

    if proposed_amount - net_paid > MONEY_EPSILON:
        raise ExceedsNetPayment(f"Refund exceeds refundable balance ({quantize_money(net_paid)}).")

    blocked = [breakdown for breakdown in breakdowns_touched if breakdown.is_refundable is False]
    if blocked:
        names = ', '.join(breakdown.description for breakdown in blocked)
        raise NonRefundableItem(f"Payment covers non-refundable fee items: {names}.")

    return proposed_amount
