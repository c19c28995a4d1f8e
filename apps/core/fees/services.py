from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone
from django.utils.crypto import get_random_string
from django.utils.http import int_to_base36

from apps.core.academic_sessions.models import AcademicYear
from apps.core.students.models import Student

from .exceptions import (
    AlreadyAssigned,
    AmountExceedsBalance,
    AssignmentNotFound,
    DuplicateReference,
    DuplicateTemplate,
    EmptyBreakdown,
    FeeInactive,
    FeeInvariantError,
    FeeNotApplicable,
    InvalidAdjustmentType,
    InvalidAmount,
    InvalidBreakdown,
    LineItemExceedsBreakdown,
    LineItemMismatch,
    NoFeeTemplate,
    NonPositiveAmount,
    OptionalFeeOverpayment,
    ReasonRequired,
    StaleStateConflict,
    TemplateInUse,
    UnknownBreakdown,
    VariationRequired,
)
from .ledger import (
    LINE_ITEM_TOLERANCE,
    MONEY_EPSILON,
    ZERO,
    LedgerSnapshot,
    allocated_by_breakdown,
    compute_ledger,
    quantize_money,
    validate_refund,
)
from .models import (
    FeeAdjustment,
    FeeBreakdown,
    FeePayment,
    FeePaymentLineItem,
    FeeRefund,
    FeeTemplate,
    OptionalFee,
    OptionalFeeVariation,
    StudentFeeStatus,
    StudentOptionalFee,
)


logger = logging.getLogger(__name__)

PAYMENT_REFERENCE_PREFIX = 'PAY'
REFUND_REFERENCE_PREFIX = 'REF'


def _balance_floor():
    floor = getattr(settings, 'FEE_LEDGER_BALANCE_FLOOR', ZERO)
    if floor is None:
        return None
    return quantize_money(floor)


def _reference_attempts() -> int:
    return max(int(getattr(settings, 'FEE_LEDGER_REFERENCE_ATTEMPTS', 5)), 1)


def _money(value) -> Decimal:
    try:
        return quantize_money(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"'{value}' is not a valid amount.") from None


def _clean_text(value) -> str:
    return (value or '').strip()


def _lock_fee_status(*, student: Student, academic_year: AcademicYear, expected_revision=None) -> StudentFeeStatus:
    StudentFeeStatus.objects.get_or_create(student=student, academic_year=academic_year)
    status = StudentFeeStatus.objects.select_for_update().get(student=student, academic_year=academic_year)
    if expected_revision is not None and status.revision != expected_revision:
        logger.warning(
            'Stale fee ledger write for student %s in %s: expected revision %s, found %s',
            student.student_number,
            academic_year.name,
            expected_revision,
            status.revision,
        )
        raise StaleStateConflict()
    return status


def _bump_revision(status: StudentFeeStatus):
    status.revision += 1
    status.save(update_fields=['revision', 'updated_at'])
    return status


def _generate_reference(prefix: str, owner: Student) -> str:
    fragment = ''.join(ch for ch in owner.student_number if ch.isalnum())[-6:].upper() or str(owner.pk)
    stamp = int_to_base36(int(timezone.now().timestamp() * 1000)).upper()
    suffix = get_random_string(4, allowed_chars='ABCDEFGHJKLMNPQRSTUVWXYZ23456789')
    return f"{prefix}-{fragment}-{stamp}-{suffix}"


def _create_with_reference(model, *, reference_number, prefix, owner, **fields):
    supplied = _clean_text(reference_number)
    if supplied:
        if model.objects.filter(reference_number=supplied).exists():
            raise DuplicateReference(f"Reference number {supplied} is already in use.")
        try:
            with transaction.atomic():
                return model.objects.create(reference_number=supplied, **fields)
        except IntegrityError:
            raise DuplicateReference(f"Reference number {supplied} is already in use.") from None

    attempts = _reference_attempts()
    for attempt in range(1, attempts + 1):
        candidate = _generate_reference(prefix, owner)
        try:
            with transaction.atomic():
                return model.objects.create(reference_number=candidate, **fields)
        except IntegrityError:
            logger.warning('Reference %s collided (attempt %s of %s)', candidate, attempt, attempts)
    raise DuplicateReference('Could not generate a unique reference number.')


def _ledger_inputs(*, student: Student, academic_year: AcademicYear):
    return {
        'fee_template': get_fee_template(grade_level=student.grade_level, academic_year=academic_year),
        'optional_fee_assignments': StudentOptionalFee.objects.for_student_year(student, academic_year),
        'payments': FeePayment.objects.for_student_year(student, academic_year),
        'refunds': FeeRefund.objects.for_student_year(student, academic_year),
        'adjustments': FeeAdjustment.objects.for_student_year(student, academic_year),
    }


def _snapshot_for(*, student: Student, academic_year: AcademicYear, status: StudentFeeStatus | None) -> LedgerSnapshot:
    return compute_ledger(
        **_ledger_inputs(student=student, academic_year=academic_year),
        is_late_payment=status.is_late_payment if status else False,
        late_since=status.late_since if status else None,
        revision=status.revision if status else 0,
    )


def get_ledger_snapshot(*, student: Student, academic_year: AcademicYear, require_template=False) -> LedgerSnapshot:
    status = StudentFeeStatus.objects.for_student_year(student, academic_year).first()
    snapshot = _snapshot_for(student=student, academic_year=academic_year, status=status)
    if require_template and not snapshot.has_fee_template:
        raise NoFeeTemplate(
            f"No fee template exists for {student.grade_level} in {academic_year.name}."
        )
    return snapshot


def get_payment_history(*, student: Student, academic_year: AcademicYear):
    return {
        'payments': list(
            FeePayment.objects.for_student_year(student, academic_year)
            .prefetch_related('line_items', 'refunds')
            .order_by('created_at', 'id')
        ),
        'refunds': list(
            FeeRefund.objects.for_student_year(student, academic_year)
            .select_related('payment')
            .order_by('created_at', 'id')
        ),
        'adjustments': list(
            FeeAdjustment.objects.for_student_year(student, academic_year).order_by('created_at', 'id')
        ),
    }


# Fee structure


def get_fee_template(*, grade_level: str, academic_year: AcademicYear) -> FeeTemplate | None:
    return FeeTemplate.objects.filter(
        academic_year=academic_year,
        grade_level=grade_level,
    ).first()


def _prepare_breakdowns(items):
    items = list(items or [])
    if not items:
        raise EmptyBreakdown()

    prepared = []
    for position, item in enumerate(items):
        description = _clean_text(item.get('description'))
        if not description:
            raise InvalidBreakdown(f"Breakdown item {position + 1} needs a description.")

        amount = _money(item.get('amount'))
        if amount <= 0:
            raise InvalidAmount(f"Breakdown '{description}' must have an amount greater than zero.")

        category = item.get('category') or FeeBreakdown.CATEGORY_MISC
        if category not in dict(FeeBreakdown.CATEGORY_CHOICES):
            raise InvalidBreakdown(f"Unknown breakdown category: {category}.")

        prepared.append({
            'description': description,
            'amount': amount,
            'category': category,
            'order': item.get('order', position),
            'is_refundable': item.get('is_refundable', True),
        })
    return prepared


@transaction.atomic
def create_or_replace_breakdowns(*, fee_template: FeeTemplate, items):
    prepared = _prepare_breakdowns(items)

    if FeePaymentLineItem.objects.filter(fee_breakdown__fee_template=fee_template).exists():
        raise TemplateInUse(
            f"Breakdowns of {fee_template.name} are referenced by recorded payments and cannot be replaced."
        )

    fee_template.breakdowns.all().delete()
    breakdowns = FeeBreakdown.objects.bulk_create(
        [FeeBreakdown(fee_template=fee_template, **row) for row in prepared]
    )

    fee_template.total_amount = sum((row['amount'] for row in prepared), ZERO)
    fee_template.full_clean()
    fee_template.save(update_fields=['total_amount', 'updated_at'])

    logger.info(
        'Replaced %s breakdown items on fee template %s (total %s)',
        len(breakdowns),
        fee_template.pk,
        fee_template.total_amount,
    )
    return list(fee_template.breakdowns.all())


@transaction.atomic
def create_fee_template(*, academic_year: AcademicYear, grade_level: str, name: str, description='', breakdowns=(), is_active=True) -> FeeTemplate:
    grade_level = _clean_text(grade_level)
    if FeeTemplate.objects.filter(academic_year=academic_year, grade_level=grade_level).exists():
        raise DuplicateTemplate(
            f"A fee template already exists for {grade_level} in {academic_year.name}."
        )

    template = FeeTemplate(
        academic_year=academic_year,
        grade_level=grade_level,
        name=_clean_text(name),
        description=description or '',
        is_active=is_active,
    )
    template.full_clean(validate_unique=False, validate_constraints=False)
    try:
        with transaction.atomic():
            template.save()
    except IntegrityError:
        raise DuplicateTemplate(
            f"A fee template already exists for {grade_level} in {academic_year.name}."
        ) from None

    if breakdowns:
        create_or_replace_breakdowns(fee_template=template, items=breakdowns)
        template.refresh_from_db()

    logger.info('Created fee template %s for %s in %s', template.pk, grade_level, academic_year.name)
    return template


def get_applicable_optional_fees(*, grade_level: str, academic_year: AcademicYear):
    fees = (
        OptionalFee.objects.filter(academic_year=academic_year, is_active=True)
        .prefetch_related('variations')
        .order_by('sort_order', 'name', 'id')
    )
    return [fee for fee in fees if fee.applies_to(grade_level)]


@transaction.atomic
def create_optional_fee(
    *,
    academic_year: AcademicYear,
    name: str,
    category=OptionalFee.CATEGORY_OTHER,
    amount=None,
    variations=(),
    applicable_grade_levels=(),
    description='',
    sort_order=0,
    is_active=True,
) -> OptionalFee:
    variations = list(variations or [])
    optional_fee = OptionalFee(
        academic_year=academic_year,
        name=_clean_text(name),
        description=description or '',
        category=category,
        amount=_money(amount) if amount is not None else None,
        has_variations=bool(variations),
        applicable_grade_levels=list(applicable_grade_levels or []),
        sort_order=sort_order,
        is_active=is_active,
    )
    if optional_fee.amount is not None and optional_fee.amount < 0:
        raise InvalidAmount(f"Optional fee '{optional_fee.name}' cannot have a negative amount.")
    if not variations and optional_fee.amount is None:
        raise InvalidAmount(f"Optional fee '{optional_fee.name}' needs an amount or variations.")
    optional_fee.full_clean()
    optional_fee.save()

    for row in variations:
        variation_amount = _money(row.get('amount'))
        if variation_amount < 0:
            raise InvalidAmount(f"Variation '{row.get('name')}' cannot have a negative amount.")
        variation = OptionalFeeVariation(
            optional_fee=optional_fee,
            name=_clean_text(row.get('name')),
            amount=variation_amount,
        )
        variation.full_clean()
        variation.save()

    logger.info('Created optional fee %s (%s) for %s', optional_fee.pk, optional_fee.name, academic_year.name)
    return optional_fee


@transaction.atomic
def assign_optional_fee(
    *,
    student: Student,
    academic_year: AcademicYear,
    optional_fee: OptionalFee,
    variation: OptionalFeeVariation | None = None,
    amount=None,
    expected_revision=None,
) -> StudentOptionalFee:
    if not optional_fee.is_active:
        raise FeeInactive(f"Optional fee '{optional_fee.name}' is inactive.")
    if optional_fee.academic_year_id != academic_year.id:
        raise FeeNotApplicable(f"Optional fee '{optional_fee.name}' belongs to another academic year.")
    if not optional_fee.applies_to(student.grade_level):
        raise FeeNotApplicable(
            f"Optional fee '{optional_fee.name}' does not apply to {student.grade_level}."
        )

    if optional_fee.has_variations and variation is None:
        raise VariationRequired(f"Select a variation for '{optional_fee.name}'.")
    if variation is not None and variation.optional_fee_id != optional_fee.id:
        raise InvalidAmount(f"Variation '{variation.name}' does not belong to '{optional_fee.name}'.")

    if amount is None:
        amount = variation.amount if variation is not None else optional_fee.amount
    amount = _money(amount)
    if amount < 0:
        raise InvalidAmount('Optional fee amount cannot be negative.')

    status = _lock_fee_status(student=student, academic_year=academic_year, expected_revision=expected_revision)

    if StudentOptionalFee.objects.for_student_year(student, academic_year).filter(optional_fee=optional_fee).exists():
        raise AlreadyAssigned(f"'{optional_fee.name}' is already assigned to {student.student_number}.")

    assignment = StudentOptionalFee.objects.create(
        student=student,
        academic_year=academic_year,
        optional_fee=optional_fee,
        variation=variation,
        amount=amount,
        is_paid=amount == 0,
    )
    _bump_revision(status)

    logger.info(
        'Assigned optional fee %s to %s for %s (amount %s)',
        optional_fee.name,
        student.student_number,
        academic_year.name,
        amount,
    )
    return assignment


@transaction.atomic
def remove_optional_fee_assignment(*, student: Student, academic_year: AcademicYear, optional_fee: OptionalFee, expected_revision=None):
    status = _lock_fee_status(student=student, academic_year=academic_year, expected_revision=expected_revision)

    assignment = StudentOptionalFee.objects.for_student_year(student, academic_year).filter(
        optional_fee=optional_fee,
    ).first()
    if assignment is None:
        raise AssignmentNotFound(f"'{optional_fee.name}' is not assigned to {student.student_number}.")

    assignment.delete()
    _bump_revision(status)

    logger.info('Removed optional fee %s from %s for %s', optional_fee.name, student.student_number, academic_year.name)


def _locked_assignment(*, student: Student, academic_year: AcademicYear, optional_fee: OptionalFee) -> StudentOptionalFee:
    assignment = StudentOptionalFee.objects.for_student_year(student, academic_year).select_for_update().filter(
        optional_fee=optional_fee,
    ).first()
    if assignment is None:
        raise AssignmentNotFound(f"'{optional_fee.name}' is not assigned to {student.student_number}.")
    return assignment


@transaction.atomic
def record_optional_fee_payment(
    *,
    student: Student,
    academic_year: AcademicYear,
    optional_fee: OptionalFee,
    amount=None,
    expected_revision=None,
) -> StudentOptionalFee:
    """
    Settles part or all of an assigned optional fee.

    Tracks settlement per item only. Ledger totals count money through
    ``FeePayment`` records, so this never changes the snapshot balance.
    """
    status = _lock_fee_status(student=student, academic_year=academic_year, expected_revision=expected_revision)
    assignment = _locked_assignment(student=student, academic_year=academic_year, optional_fee=optional_fee)

    unpaid = assignment.amount - assignment.paid_amount
    amount = unpaid if amount is None else _money(amount)
    if amount <= 0:
        raise NonPositiveAmount(f"'{optional_fee.name}' has nothing left to pay." if unpaid <= 0 else None)
    if amount > unpaid:
        logger.warning(
            'Rejected optional fee payment of %s for %s on %s: unpaid amount is %s',
            amount,
            student.student_number,
            optional_fee.name,
            unpaid,
        )
        raise OptionalFeeOverpayment(f"Payment of {amount} exceeds the unpaid {unpaid} for '{optional_fee.name}'.")

    assignment.paid_amount += amount
    assignment.is_paid = assignment.paid_amount >= assignment.amount
    assignment.full_clean()
    assignment.save(update_fields=['paid_amount', 'is_paid'])
    _bump_revision(status)

    logger.info(
        'Recorded %s against optional fee %s for %s (paid %s of %s)',
        amount,
        optional_fee.name,
        student.student_number,
        assignment.paid_amount,
        assignment.amount,
    )
    return assignment


@transaction.atomic
def update_optional_fee_amount(
    *,
    student: Student,
    academic_year: AcademicYear,
    optional_fee: OptionalFee,
    amount,
    expected_revision=None,
) -> StudentOptionalFee:
    amount = _money(amount)
    if amount < 0:
        raise InvalidAmount('Optional fee amount cannot be negative.')

    status = _lock_fee_status(student=student, academic_year=academic_year, expected_revision=expected_revision)
    assignment = _locked_assignment(student=student, academic_year=academic_year, optional_fee=optional_fee)

    if amount < assignment.paid_amount:
        raise InvalidAmount(
            f"Amount {amount} is below the {assignment.paid_amount} already paid for '{optional_fee.name}'."
        )

    previous = assignment.amount
    assignment.amount = amount
    assignment.is_paid = assignment.paid_amount >= amount
    assignment.full_clean()
    assignment.save(update_fields=['amount', 'is_paid'])
    _bump_revision(status)

    logger.info(
        'Changed optional fee %s for %s from %s to %s',
        optional_fee.name,
        student.student_number,
        previous,
        amount,
    )
    return assignment


# Financial events


def _resolve_breakdown(value, allowed):
    breakdown_id = value.pk if isinstance(value, FeeBreakdown) else value
    try:
        return allowed[int(breakdown_id)]
    except (KeyError, TypeError, ValueError):
        raise UnknownBreakdown(
            f"Fee item {breakdown_id} is not part of the student's fee template."
        ) from None


def _prepare_line_items(line_items, *, amount: Decimal, fee_template: FeeTemplate | None, student: Student, academic_year: AcademicYear):
    line_items = list(line_items or [])
    if not line_items:
        return []

    allowed = {}
    if fee_template is not None:
        allowed = {breakdown.id: breakdown for breakdown in fee_template.breakdowns.all()}

    prepared = []
    for row in line_items:
        breakdown = _resolve_breakdown(row.get('fee_breakdown'), allowed)
        item_amount = _money(row.get('amount'))
        if item_amount <= 0:
            raise NonPositiveAmount(f"Line item for {breakdown.description} must be greater than zero.")
        prepared.append((breakdown, item_amount))

    items_total = sum((item_amount for _, item_amount in prepared), ZERO)
    if abs(items_total - amount) > LINE_ITEM_TOLERANCE:
        raise LineItemMismatch(
            f"Line items total {items_total} but the payment amount is {amount}."
        )

    already_allocated = allocated_by_breakdown(
        FeePaymentLineItem.objects.filter(
            payment__student=student,
            payment__academic_year=academic_year,
            fee_breakdown_id__in=list(allowed),
        ),
        FeeRefund.objects.for_student_year(student, academic_year),
    )
    requested = {}
    for breakdown, item_amount in prepared:
        requested[breakdown.id] = requested.get(breakdown.id, ZERO) + item_amount
    for breakdown_id, total in requested.items():
        breakdown = allowed[breakdown_id]
        remaining = breakdown.amount - already_allocated.get(breakdown_id, ZERO)
        if total - remaining > MONEY_EPSILON:
            raise LineItemExceedsBreakdown(
                f"{breakdown.description} has {quantize_money(remaining)} remaining; cannot allocate {total}."
            )

    return prepared


@transaction.atomic
def record_fee_payment(
    *,
    student: Student,
    academic_year: AcademicYear,
    amount_paid,
    payment_method=FeePayment.METHOD_CASH,
    line_items=None,
    reference_number='',
    remarks='',
    payment_date=None,
    recorded_by='system',
    expected_revision=None,
) -> FeePayment:
    amount = _money(amount_paid)
    if amount <= 0:
        raise NonPositiveAmount('Payment amount must be greater than zero.')
    if payment_method not in dict(FeePayment.PAYMENT_METHOD_CHOICES):
        raise ValidationError(f"Unknown payment method: {payment_method}.")

    status = _lock_fee_status(student=student, academic_year=academic_year, expected_revision=expected_revision)
    snapshot = _snapshot_for(student=student, academic_year=academic_year, status=status)

    try:
        prepared = _prepare_line_items(
            line_items,
            amount=amount,
            fee_template=get_fee_template(grade_level=student.grade_level, academic_year=academic_year),
            student=student,
            academic_year=academic_year,
        )

        floor = _balance_floor()
        if floor is not None and (snapshot.balance - amount) - floor < -MONEY_EPSILON:
            raise AmountExceedsBalance(
                f"Payment exceeds outstanding balance ({quantize_money(snapshot.balance)})."
            )
    except FeeInvariantError as exc:
        logger.warning('Rejected payment for %s: %s', student.student_number, exc.message)
        raise

    payment = _create_with_reference(
        FeePayment,
        reference_number=reference_number,
        prefix=PAYMENT_REFERENCE_PREFIX,
        owner=student,
        student=student,
        academic_year=academic_year,
        amount_paid=amount,
        payment_date=payment_date or timezone.localdate(),
        payment_method=payment_method,
        remarks=remarks or '',
        recorded_by=recorded_by or 'system',
    )

    FeePaymentLineItem.objects.bulk_create([
        FeePaymentLineItem(
            payment=payment,
            fee_breakdown=breakdown,
            description=breakdown.description,
            amount=item_amount,
        )
        for breakdown, item_amount in prepared
    ])
    _bump_revision(status)

    logger.info(
        'Recorded payment %s of %s for %s in %s (%s line items)',
        payment.reference_number,
        amount,
        student.student_number,
        academic_year.name,
        len(prepared),
    )
    return payment


@transaction.atomic
def edit_payment_remarks(*, payment: FeePayment, remarks: str) -> FeePayment:
    payment.remarks = remarks or ''
    payment.full_clean()
    payment.save(update_fields=['remarks'])
    logger.info('Updated remarks on payment %s', payment.reference_number)
    return payment


def _breakdowns_touched(payment: FeePayment):
    items = list(payment.line_items.select_related('fee_breakdown'))
    if items:
        return [item.fee_breakdown for item in items]

    template = get_fee_template(grade_level=payment.student.grade_level, academic_year=payment.academic_year)
    if template is None:
        return []
    return list(template.breakdowns.all())


@transaction.atomic
def create_fee_refund(*, payment: FeePayment, amount, reason: str, refunded_by='system', refund_date=None, expected_revision=None) -> FeeRefund:
    reason = _clean_text(reason)
    if not reason:
        raise ReasonRequired('Refund reason is required.')

    refund_amount = _money(amount)
    status = _lock_fee_status(
        student=payment.student,
        academic_year=payment.academic_year,
        expected_revision=expected_revision,
    )

    existing = list(FeeRefund.objects.filter(payment=payment))
    try:
        approved = validate_refund(payment, existing, refund_amount, _breakdowns_touched(payment))
    except FeeInvariantError as exc:
        logger.warning('Rejected refund on payment %s: %s', payment.reference_number, exc.message)
        raise

    refund = _create_with_reference(
        FeeRefund,
        reference_number='',
        prefix=REFUND_REFERENCE_PREFIX,
        owner=payment.student,
        student=payment.student,
        academic_year=payment.academic_year,
        payment=payment,
        amount=quantize_money(approved),
        reason=reason[:255],
        refund_date=refund_date or timezone.localdate(),
        refunded_by=refunded_by or 'system',
    )
    _bump_revision(status)

    logger.info(
        'Refunded %s on payment %s (%s)',
        refund.amount,
        payment.reference_number,
        refund.reference_number,
    )
    return refund


@transaction.atomic
def create_fee_adjustment(
    *,
    student: Student,
    academic_year: AcademicYear,
    adjustment_type: str,
    amount,
    reason: str,
    description='',
    created_by='system',
    expected_revision=None,
) -> FeeAdjustment:
    if adjustment_type not in dict(FeeAdjustment.ADJUSTMENT_TYPE_CHOICES):
        raise InvalidAdjustmentType(f"Unknown adjustment type: {adjustment_type}.")

    adjustment_amount = _money(amount)
    if adjustment_amount <= 0:
        raise NonPositiveAmount('Adjustment amount must be greater than zero.')

    reason = _clean_text(reason)
    if not reason:
        raise ReasonRequired('Adjustment reason is required.')

    status = _lock_fee_status(student=student, academic_year=academic_year, expected_revision=expected_revision)

    adjustment = FeeAdjustment(
        student=student,
        academic_year=academic_year,
        adjustment_type=adjustment_type,
        amount=adjustment_amount,
        reason=reason[:255],
        description=description or '',
        created_by=created_by or 'system',
    )
    adjustment.full_clean()
    adjustment.save()
    _bump_revision(status)

    logger.info(
        'Recorded %s adjustment of %s for %s in %s',
        adjustment_type.lower(),
        adjustment_amount,
        student.student_number,
        academic_year.name,
    )
    return adjustment


# Late payment flag


@transaction.atomic
def set_late_status(*, student: Student, academic_year: AcademicYear, is_late: bool, late_since=None) -> StudentFeeStatus:
    status = _lock_fee_status(student=student, academic_year=academic_year)

    if is_late:
        status.is_late_payment = True
        status.late_since = late_since or timezone.now()
    else:
        status.is_late_payment = False
        status.late_since = None

    status.revision += 1
    status.full_clean()
    status.save(update_fields=['is_late_payment', 'late_since', 'revision', 'updated_at'])

    logger.info(
        'Late payment flag for %s in %s set to %s',
        student.student_number,
        academic_year.name,
        status.is_late_payment,
    )
    return status


def overdue_days(status: StudentFeeStatus | None, today=None) -> int:
    if status is None or not status.is_late_payment or not status.late_since:
        return 0
    today = today or timezone.localdate()
    since = timezone.localtime(status.late_since).date() if timezone.is_aware(status.late_since) else status.late_since.date()
    return max((today - since).days, 0)
