from datetime import date, timedelta
from decimal import Decimal
from io import StringIO
from types import SimpleNamespace

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from apps.core.academic_sessions.models import AcademicYear
from apps.core.students.models import Student

from .exceptions import (
    KIND_CONFLICT,
    KIND_INVARIANT,
    KIND_VALIDATION,
    AlreadyAssigned,
    AmountExceedsBalance,
    AssignmentNotFound,
    DuplicateReference,
    DuplicateTemplate,
    EmptyBreakdown,
    ExceedsNetPayment,
    FeeInactive,
    FeeNotApplicable,
    InvalidAdjustmentType,
    InvalidAmount,
    InvalidBreakdown,
    LineItemExceedsBreakdown,
    LineItemMismatch,
    NoFeeTemplate,
    NonPositiveAmount,
    NonRefundableItem,
    OptionalFeeOverpayment,
    ReasonRequired,
    StaleStateConflict,
    TemplateInUse,
    UnknownBreakdown,
    VariationRequired,
)
from .ledger import (
    STATUS_OVERPAID,
    STATUS_PAID,
    STATUS_PARTIAL,
    STATUS_UNPAID,
    allocated_by_breakdown,
    compute_ledger,
    derive_payment_status,
    validate_refund,
)
from .models import (
    FeeAdjustment,
    FeePayment,
    FeePaymentLineItem,
    FeeRefund,
    FeeTemplate,
    OptionalFee,
    StudentOptionalFee,
)
from .services import (
    assign_optional_fee,
    create_fee_adjustment,
    create_fee_refund,
    create_fee_template,
    create_optional_fee,
    create_or_replace_breakdowns,
    edit_payment_remarks,
    get_applicable_optional_fees,
    get_fee_template,
    get_ledger_snapshot,
    get_payment_history,
    overdue_days,
    record_fee_payment,
    record_optional_fee_payment,
    remove_optional_fee_assignment,
    set_late_status,
    update_optional_fee_amount,
)


GRADE_ONE_BREAKDOWNS = [
    {'description': 'Entrance Fee', 'amount': '3000.00', 'category': 'REGISTRATION', 'is_refundable': False},
    {'description': 'Modules', 'amount': '4900.00', 'category': 'BOOKS'},
    {'description': 'Supplementary Learning', 'amount': '700.00', 'category': 'BOOKS'},
    {'description': 'Miscellaneous', 'amount': '4500.00', 'category': 'MISC'},
    {'description': 'Other Fee', 'amount': '5800.00', 'category': 'MISC'},
    {'description': 'Tuition Fee', 'amount': '7000.00', 'category': 'TUITION', 'is_refundable': False},
]


def _payment(amount_paid, payment_id=1, payment_date=None):
    return SimpleNamespace(id=payment_id, amount_paid=Decimal(amount_paid), payment_date=payment_date)


class LedgerCalculatorTests(SimpleTestCase):
    def setUp(self):
        self.template = SimpleNamespace(total_amount=Decimal('25900.00'))

    def test_status_boundaries(self):
        self.assertEqual(derive_payment_status(Decimal('0'), Decimal('100.00')), STATUS_UNPAID)
        self.assertEqual(derive_payment_status(Decimal('50.00'), Decimal('100.00')), STATUS_PARTIAL)
        self.assertEqual(derive_payment_status(Decimal('100.00'), Decimal('100.00')), STATUS_PAID)
        self.assertEqual(derive_payment_status(Decimal('100.01'), Decimal('100.00')), STATUS_OVERPAID)

    def test_zero_paid_is_unpaid_even_when_nothing_is_due(self):
        self.assertEqual(derive_payment_status(Decimal('0.00'), Decimal('0.00')), STATUS_UNPAID)

    def test_missing_template_means_zero_base(self):
        snapshot = compute_ledger(None, [], [], [], [])
        self.assertFalse(snapshot.has_fee_template)
        self.assertEqual(snapshot.base_fee, Decimal('0'))
        self.assertEqual(snapshot.balance, Decimal('0'))
        self.assertEqual(snapshot.payment_status, STATUS_UNPAID)

    def test_totals_combine_optional_fees_adjustments_and_refunds(self):
        snapshot = compute_ledger(
            self.template,
            [SimpleNamespace(amount=Decimal('1268.00'))],
            [
                _payment('10000.00', payment_date=date(2025, 8, 1)),
                _payment('2000.00', payment_id=2, payment_date=date(2025, 9, 1)),
            ],
            [SimpleNamespace(payment_id=2, amount=Decimal('500.00'))],
            [
                SimpleNamespace(adjustment_type='DISCOUNT', amount=Decimal('1000.00')),
                SimpleNamespace(adjustment_type='ADDITIONAL', amount=Decimal('250.00')),
            ],
        )

        self.assertEqual(snapshot.total_due, Decimal('26418.00'))
        self.assertEqual(snapshot.total_adjustments, Decimal('-750.00'))
        self.assertEqual(snapshot.gross_paid, Decimal('12000.00'))
        self.assertEqual(snapshot.total_paid, Decimal('11500.00'))
        self.assertEqual(snapshot.balance, Decimal('14918.00'))
        self.assertEqual(snapshot.payment_status, STATUS_PARTIAL)
        self.assertEqual(snapshot.last_payment_date, date(2025, 9, 1))

    def test_identical_inputs_give_equal_snapshots(self):
        payments = [_payment('3000.00')]
        first = compute_ledger(self.template, [], payments, [], [])
        second = compute_ledger(self.template, [], payments, [], [])
        self.assertEqual(first, second)

    def test_total_paid_never_negative(self):
        snapshot = compute_ledger(
            self.template,
            [],
            [_payment('100.00')],
            [SimpleNamespace(payment_id=1, amount=Decimal('150.00'))],
            [],
        )
        self.assertEqual(snapshot.total_paid, Decimal('0.00'))
        self.assertEqual(snapshot.payment_status, STATUS_UNPAID)

    def test_late_since_only_reported_while_late(self):
        moment = timezone.now()
        snapshot = compute_ledger(self.template, [], [], [], [], is_late_payment=False, late_since=moment)
        self.assertIsNone(snapshot.late_since)

    def test_refund_allocation_is_pro_rata(self):
        items = [
            SimpleNamespace(payment_id=1, fee_breakdown_id=10, amount=Decimal('600.00')),
            SimpleNamespace(payment_id=1, fee_breakdown_id=11, amount=Decimal('400.00')),
        ]
        refunds = [SimpleNamespace(payment_id=1, amount=Decimal('500.00'))]

        allocated = allocated_by_breakdown(items, refunds)

        self.assertEqual(allocated[10], Decimal('300.00'))
        self.assertEqual(allocated[11], Decimal('200.00'))


class RefundGuardTests(SimpleTestCase):
    def setUp(self):
        self.payment = _payment('3000.00')
        self.refundable = SimpleNamespace(description='Modules', is_refundable=True)
        self.locked = SimpleNamespace(description='Entrance Fee', is_refundable=False)

    def test_rejects_non_positive_amount(self):
        with self.assertRaises(NonPositiveAmount):
            validate_refund(self.payment, [], Decimal('0'), [self.refundable])

    def test_rejects_amount_above_net_paid(self):
        existing = [SimpleNamespace(amount=Decimal('3000.00'))]
        with self.assertRaises(ExceedsNetPayment) as ctx:
            validate_refund(self.payment, existing, Decimal('1.00'), [self.refundable])
        self.assertEqual(ctx.exception.kind, KIND_INVARIANT)

    def test_rejects_non_refundable_breakdown(self):
        with self.assertRaises(NonRefundableItem) as ctx:
            validate_refund(self.payment, [], Decimal('100.00'), [self.refundable, self.locked])
        self.assertIn('Entrance Fee', ctx.exception.message)

    def test_ceiling_is_checked_before_refundability(self):
        with self.assertRaises(ExceedsNetPayment):
            validate_refund(self.payment, [], Decimal('5000.00'), [self.locked])

    def test_returns_approved_amount(self):
        existing = [SimpleNamespace(amount=Decimal('1000.00'))]
        approved = validate_refund(self.payment, existing, Decimal('2000.00'), [self.refundable])
        self.assertEqual(approved, Decimal('2000.00'))


class FeesBaseTestCase(TestCase):
    def setUp(self):
        self.academic_year = AcademicYear.objects.create(
            name='2025-2026',
            start_date=date(2025, 8, 1),
            end_date=date(2026, 5, 31),
            is_active=True,
        )
        self.student = Student.objects.create(
            student_number='2025-000123',
            first_name='Andrea',
            last_name='Santos',
            grade_level='Grade 1',
        )
        self.template = create_fee_template(
            academic_year=self.academic_year,
            grade_level='Grade 1',
            name='Grade 1 - Cash Scheme 2025',
            breakdowns=GRADE_ONE_BREAKDOWNS,
        )
        self.breakdowns = {row.description: row for row in self.template.breakdowns.all()}

    def pay(self, amount, **kwargs):
        return record_fee_payment(
            student=self.student,
            academic_year=self.academic_year,
            amount_paid=amount,
            **kwargs,
        )

    def snapshot(self):
        return get_ledger_snapshot(student=self.student, academic_year=self.academic_year)


class FeeStructureTests(FeesBaseTestCase):
    def test_template_total_matches_breakdowns(self):
        self.assertEqual(self.template.total_amount, Decimal('25900.00'))
        self.assertEqual(
            [row.description for row in self.template.breakdowns.all()],
            [row['description'] for row in GRADE_ONE_BREAKDOWNS],
        )
        self.assertFalse(self.breakdowns['Tuition Fee'].is_refundable)
        self.assertTrue(self.breakdowns['Modules'].is_refundable)

    def test_duplicate_template_rejected(self):
        with self.assertRaises(DuplicateTemplate):
            create_fee_template(
                academic_year=self.academic_year,
                grade_level='Grade 1',
                name='Another Grade 1 scheme',
            )

    def test_replace_breakdowns_recomputes_total(self):
        create_or_replace_breakdowns(
            fee_template=self.template,
            items=[
                {'description': 'Tuition Fee', 'amount': '8000.00', 'category': 'TUITION'},
                {'description': 'Miscellaneous', 'amount': '4500.50', 'category': 'MISC'},
            ],
        )
        self.template.refresh_from_db()
        self.assertEqual(self.template.total_amount, Decimal('12500.50'))
        self.assertEqual(self.template.breakdowns.count(), 2)

    def test_replace_breakdowns_validates_items(self):
        with self.assertRaises(EmptyBreakdown):
            create_or_replace_breakdowns(fee_template=self.template, items=[])
        with self.assertRaises(InvalidAmount):
            create_or_replace_breakdowns(
                fee_template=self.template,
                items=[{'description': 'Tuition Fee', 'amount': '0'}],
            )
        with self.assertRaises(InvalidBreakdown):
            create_or_replace_breakdowns(
                fee_template=self.template,
                items=[{'description': '  ', 'amount': '100.00'}],
            )

        self.template.refresh_from_db()
        self.assertEqual(self.template.total_amount, Decimal('25900.00'))
        self.assertEqual(self.template.breakdowns.count(), 6)

    def test_breakdowns_referenced_by_payments_cannot_be_replaced(self):
        self.pay('700.00', line_items=[{'fee_breakdown': self.breakdowns['Supplementary Learning'], 'amount': '700.00'}])

        with self.assertRaises(TemplateInUse):
            create_or_replace_breakdowns(
                fee_template=self.template,
                items=[{'description': 'Tuition Fee', 'amount': '8000.00'}],
            )

    def test_template_with_payments_cannot_be_deleted(self):
        self.pay('1000.00')
        with self.assertRaises(ValidationError):
            self.template.delete()

    def test_unused_template_delete_deactivates(self):
        self.template.delete()
        self.template.refresh_from_db()
        self.assertFalse(self.template.is_active)
        self.assertEqual(get_fee_template(grade_level='Grade 1', academic_year=self.academic_year), self.template)


class OptionalFeeTests(FeesBaseTestCase):
    def setUp(self):
        super().setUp()
        self.id_card = create_optional_fee(
            academic_year=self.academic_year,
            name='School ID',
            category=OptionalFee.CATEGORY_ID_CARD,
            amount='250.00',
            sort_order=1,
        )
        self.uniform = create_optional_fee(
            academic_year=self.academic_year,
            name='Daily Uniform',
            category=OptionalFee.CATEGORY_UNIFORM,
            variations=[
                {'name': 'Girl - Short Sleeve', 'amount': '1173.00'},
                {'name': 'Boy - Long Sleeve', 'amount': '1268.00'},
            ],
            sort_order=2,
        )
        self.graduation = create_optional_fee(
            academic_year=self.academic_year,
            name='Graduation Fee',
            category=OptionalFee.CATEGORY_GRADUATION,
            amount='2650.00',
            applicable_grade_levels=['Kinder 2', 'Grade 6', 'Grade 10'],
            sort_order=3,
        )

    def test_applicable_fees_filter_by_grade(self):
        names = [fee.name for fee in get_applicable_optional_fees(grade_level='Grade 1', academic_year=self.academic_year)]
        self.assertEqual(names, ['School ID', 'Daily Uniform'])

        names = [fee.name for fee in get_applicable_optional_fees(grade_level='Grade 6', academic_year=self.academic_year)]
        self.assertIn('Graduation Fee', names)

    def test_variation_required_and_amount_locked(self):
        with self.assertRaises(VariationRequired):
            assign_optional_fee(student=self.student, academic_year=self.academic_year, optional_fee=self.uniform)

        variation = self.uniform.variations.get(name='Boy - Long Sleeve')
        assignment = assign_optional_fee(
            student=self.student,
            academic_year=self.academic_year,
            optional_fee=self.uniform,
            variation=variation,
        )
        self.assertEqual(assignment.amount, Decimal('1268.00'))

        variation.amount = Decimal('1400.00')
        variation.save(update_fields=['amount'])
        assignment.refresh_from_db()
        self.assertEqual(assignment.amount, Decimal('1268.00'))

        snapshot = self.snapshot()
        self.assertEqual(snapshot.optional_due, Decimal('1268.00'))
        self.assertEqual(snapshot.total_due, Decimal('27168.00'))

    def test_inactive_fee_cannot_be_assigned(self):
        self.id_card.delete()
        self.id_card.refresh_from_db()
        self.assertFalse(self.id_card.is_active)

        with self.assertRaises(FeeInactive):
            assign_optional_fee(student=self.student, academic_year=self.academic_year, optional_fee=self.id_card)

    def test_duplicate_assignment_rejected(self):
        assign_optional_fee(student=self.student, academic_year=self.academic_year, optional_fee=self.id_card)
        with self.assertRaises(AlreadyAssigned):
            assign_optional_fee(student=self.student, academic_year=self.academic_year, optional_fee=self.id_card)

    def test_grade_restricted_fee_not_applicable(self):
        with self.assertRaises(FeeNotApplicable):
            assign_optional_fee(student=self.student, academic_year=self.academic_year, optional_fee=self.graduation)

    def test_foreign_variation_rejected(self):
        other = create_optional_fee(
            academic_year=self.academic_year,
            name='PE Uniform',
            variations=[{'name': 'Small', 'amount': '1150.00'}],
        )
        with self.assertRaises(InvalidAmount):
            assign_optional_fee(
                student=self.student,
                academic_year=self.academic_year,
                optional_fee=self.uniform,
                variation=other.variations.first(),
            )

    def test_remove_assignment(self):
        assign_optional_fee(student=self.student, academic_year=self.academic_year, optional_fee=self.id_card)
        remove_optional_fee_assignment(student=self.student, academic_year=self.academic_year, optional_fee=self.id_card)

        self.assertFalse(StudentOptionalFee.objects.filter(student=self.student).exists())
        with self.assertRaises(AssignmentNotFound):
            remove_optional_fee_assignment(
                student=self.student,
                academic_year=self.academic_year,
                optional_fee=self.id_card,
            )

    def test_flat_fee_needs_amount(self):
        with self.assertRaises(InvalidAmount):
            create_optional_fee(academic_year=self.academic_year, name='Notebook')

    def test_optional_fee_paid_in_parts(self):
        assign_optional_fee(student=self.student, academic_year=self.academic_year, optional_fee=self.id_card)
        revision = self.snapshot().revision

        assignment = record_optional_fee_payment(
            student=self.student,
            academic_year=self.academic_year,
            optional_fee=self.id_card,
            amount='100.00',
        )
        self.assertEqual(assignment.paid_amount, Decimal('100.00'))
        self.assertFalse(assignment.is_paid)

        assignment = record_optional_fee_payment(
            student=self.student,
            academic_year=self.academic_year,
            optional_fee=self.id_card,
        )
        self.assertEqual(assignment.paid_amount, Decimal('250.00'))
        self.assertTrue(assignment.is_paid)

        snapshot = self.snapshot()
        self.assertEqual(snapshot.revision, revision + 2)
        self.assertEqual(snapshot.optional_due, Decimal('250.00'))
        self.assertEqual(snapshot.total_paid, Decimal('0'))

    def test_optional_fee_overpayment_rejected(self):
        assign_optional_fee(student=self.student, academic_year=self.academic_year, optional_fee=self.id_card)
        record_optional_fee_payment(
            student=self.student,
            academic_year=self.academic_year,
            optional_fee=self.id_card,
            amount='200.00',
        )

        with self.assertRaises(OptionalFeeOverpayment) as ctx:
            record_optional_fee_payment(
                student=self.student,
                academic_year=self.academic_year,
                optional_fee=self.id_card,
                amount='60.00',
            )
        self.assertEqual(ctx.exception.kind, KIND_INVARIANT)

        with self.assertRaises(NonPositiveAmount):
            record_optional_fee_payment(
                student=self.student,
                academic_year=self.academic_year,
                optional_fee=self.id_card,
                amount='0',
            )
        with self.assertRaises(AssignmentNotFound):
            record_optional_fee_payment(
                student=self.student,
                academic_year=self.academic_year,
                optional_fee=self.uniform,
                amount='10.00',
            )

        assignment = StudentOptionalFee.objects.get(student=self.student, optional_fee=self.id_card)
        self.assertEqual(assignment.paid_amount, Decimal('200.00'))

    def test_settled_optional_fee_has_nothing_left_to_pay(self):
        assign_optional_fee(student=self.student, academic_year=self.academic_year, optional_fee=self.id_card)
        record_optional_fee_payment(student=self.student, academic_year=self.academic_year, optional_fee=self.id_card)

        with self.assertRaises(NonPositiveAmount):
            record_optional_fee_payment(student=self.student, academic_year=self.academic_year, optional_fee=self.id_card)

    def test_update_optional_fee_amount(self):
        assign_optional_fee(student=self.student, academic_year=self.academic_year, optional_fee=self.id_card)
        record_optional_fee_payment(
            student=self.student,
            academic_year=self.academic_year,
            optional_fee=self.id_card,
            amount='150.00',
        )

        assignment = update_optional_fee_amount(
            student=self.student,
            academic_year=self.academic_year,
            optional_fee=self.id_card,
            amount='150.00',
        )
        self.assertEqual(assignment.amount, Decimal('150.00'))
        self.assertTrue(assignment.is_paid)
        self.assertEqual(self.snapshot().optional_due, Decimal('150.00'))

        assignment = update_optional_fee_amount(
            student=self.student,
            academic_year=self.academic_year,
            optional_fee=self.id_card,
            amount='300.00',
        )
        self.assertFalse(assignment.is_paid)

        with self.assertRaises(InvalidAmount):
            update_optional_fee_amount(
                student=self.student,
                academic_year=self.academic_year,
                optional_fee=self.id_card,
                amount='100.00',
            )
        with self.assertRaises(InvalidAmount):
            update_optional_fee_amount(
                student=self.student,
                academic_year=self.academic_year,
                optional_fee=self.id_card,
                amount='-1.00',
            )
        with self.assertRaises(StaleStateConflict):
            update_optional_fee_amount(
                student=self.student,
                academic_year=self.academic_year,
                optional_fee=self.id_card,
                amount='250.00',
                expected_revision=0,
            )


class FeePaymentTests(FeesBaseTestCase):
    def test_full_payment_marks_ledger_paid(self):
        self.pay('25900.00')

        snapshot = self.snapshot()
        self.assertEqual(snapshot.total_due, Decimal('25900.00'))
        self.assertEqual(snapshot.total_paid, Decimal('25900.00'))
        self.assertEqual(snapshot.balance, Decimal('0.00'))
        self.assertEqual(snapshot.payment_status, STATUS_PAID)
        self.assertTrue(snapshot.is_settled)

    def test_discount_reduces_due_after_partial_payment(self):
        self.pay('10000.00')
        create_fee_adjustment(
            student=self.student,
            academic_year=self.academic_year,
            adjustment_type=FeeAdjustment.TYPE_DISCOUNT,
            amount='5900.00',
            reason='Sibling discount',
        )

        snapshot = self.snapshot()
        self.assertEqual(snapshot.total_due, Decimal('20000.00'))
        self.assertEqual(snapshot.balance, Decimal('10000.00'))
        self.assertEqual(snapshot.payment_status, STATUS_PARTIAL)

    def test_no_payments_is_unpaid(self):
        snapshot = self.snapshot()
        self.assertEqual(snapshot.balance, Decimal('25900.00'))
        self.assertEqual(snapshot.payment_status, STATUS_UNPAID)
        self.assertIsNone(snapshot.last_payment_date)

    def test_non_positive_amount_rejected(self):
        for amount in ('0', '-5.00'):
            with self.assertRaises(NonPositiveAmount):
                self.pay(amount)
        self.assertFalse(FeePayment.objects.exists())

    def test_overpayment_rejected_by_default(self):
        with self.assertRaises(AmountExceedsBalance) as ctx:
            self.pay('25900.01')
        self.assertEqual(ctx.exception.kind, KIND_INVARIANT)
        self.assertFalse(FeePayment.objects.exists())

    @override_settings(FEE_LEDGER_BALANCE_FLOOR=None)
    def test_one_cent_overpayment_is_overpaid_when_floor_disabled(self):
        self.pay('25900.01')

        snapshot = self.snapshot()
        self.assertEqual(snapshot.balance, Decimal('-0.01'))
        self.assertEqual(snapshot.payment_status, STATUS_OVERPAID)

    def test_discount_after_full_payment_reaches_overpaid(self):
        self.pay('25900.00')
        create_fee_adjustment(
            student=self.student,
            academic_year=self.academic_year,
            adjustment_type=FeeAdjustment.TYPE_DISCOUNT,
            amount='500.00',
            reason='Scholarship granted late',
        )
        self.assertEqual(self.snapshot().payment_status, STATUS_OVERPAID)

    def test_line_items_must_match_amount(self):
        with self.assertRaises(LineItemMismatch) as ctx:
            self.pay(
                '1000.00',
                line_items=[{'fee_breakdown': self.breakdowns['Modules'], 'amount': '998.00'}],
            )
        self.assertEqual(ctx.exception.kind, KIND_VALIDATION)
        self.assertFalse(FeePayment.objects.exists())
        self.assertFalse(FeePaymentLineItem.objects.exists())

    def test_line_items_within_one_cent_accepted(self):
        payment = self.pay(
            '1000.00',
            line_items=[{'fee_breakdown': self.breakdowns['Modules'].pk, 'amount': '999.99'}],
        )
        line_item = payment.line_items.get()
        self.assertEqual(line_item.description, 'Modules')
        self.assertEqual(line_item.amount, Decimal('999.99'))

    def test_line_item_must_belong_to_student_template(self):
        other_template = create_fee_template(
            academic_year=self.academic_year,
            grade_level='Grade 2',
            name='Grade 2 - Cash Scheme 2025',
            breakdowns=[{'description': 'Tuition Fee', 'amount': '7000.00'}],
        )
        with self.assertRaises(UnknownBreakdown):
            self.pay(
                '500.00',
                line_items=[{'fee_breakdown': other_template.breakdowns.get(), 'amount': '500.00'}],
            )

    def test_line_item_cannot_exceed_remaining_breakdown_balance(self):
        supplementary = self.breakdowns['Supplementary Learning']
        self.pay('500.00', line_items=[{'fee_breakdown': supplementary, 'amount': '500.00'}])

        with self.assertRaises(LineItemExceedsBreakdown):
            self.pay('300.00', line_items=[{'fee_breakdown': supplementary, 'amount': '300.00'}])

        self.pay('200.00', line_items=[{'fee_breakdown': supplementary, 'amount': '200.00'}])

    def test_refund_restores_breakdown_allocation(self):
        supplementary = self.breakdowns['Supplementary Learning']
        payment = self.pay('500.00', line_items=[{'fee_breakdown': supplementary, 'amount': '500.00'}])
        create_fee_refund(payment=payment, amount='500.00', reason='Materials not issued')

        self.pay('700.00', line_items=[{'fee_breakdown': supplementary, 'amount': '700.00'}])

    def test_generated_reference_numbers(self):
        first = self.pay('1000.00')
        second = self.pay('1000.00')
        self.assertTrue(first.reference_number.startswith('PAY-'))
        self.assertNotEqual(first.reference_number, second.reference_number)

    def test_supplied_duplicate_reference_rejected(self):
        self.pay('1000.00', reference_number='OR-0001')
        with self.assertRaises(DuplicateReference):
            self.pay('1000.00', reference_number='OR-0001')
        self.assertEqual(FeePayment.objects.count(), 1)

    def test_only_remarks_are_editable(self):
        payment = self.pay('1000.00', payment_method=FeePayment.METHOD_GCASH)

        edit_payment_remarks(payment=payment, remarks='Paid at the cashier window')
        payment.refresh_from_db()
        self.assertEqual(payment.remarks, 'Paid at the cashier window')

        payment.amount_paid = Decimal('1.00')
        with self.assertRaises(ValidationError):
            payment.full_clean()

    def test_financial_records_cannot_be_deleted(self):
        payment = self.pay('700.00', line_items=[{'fee_breakdown': self.breakdowns['Modules'], 'amount': '700.00'}])
        with self.assertRaises(ValidationError):
            payment.delete()
        with self.assertRaises(ValidationError):
            payment.line_items.get().delete()
        self.assertTrue(FeePayment.objects.filter(pk=payment.pk).exists())

    def test_payment_history_in_creation_order(self):
        first = self.pay('1000.00', line_items=[{'fee_breakdown': self.breakdowns['Modules'], 'amount': '1000.00'}])
        second = self.pay('2000.00')
        refund = create_fee_refund(payment=first, amount='250.00', reason='Duplicate module set')
        adjustment = create_fee_adjustment(
            student=self.student,
            academic_year=self.academic_year,
            adjustment_type=FeeAdjustment.TYPE_ADDITIONAL,
            amount='150.00',
            reason='Field trip',
        )

        history = get_payment_history(student=self.student, academic_year=self.academic_year)
        self.assertEqual(history['payments'], [first, second])
        self.assertEqual(history['refunds'], [refund])
        self.assertEqual(history['adjustments'], [adjustment])
        self.assertEqual(history['payments'][0].net_amount, Decimal('750.00'))


class FeeRefundTests(FeesBaseTestCase):
    def test_refund_blocked_for_non_refundable_line_item(self):
        payment = self.pay(
            '5000.00',
            line_items=[
                {'fee_breakdown': self.breakdowns['Entrance Fee'], 'amount': '3000.00'},
                {'fee_breakdown': self.breakdowns['Modules'], 'amount': '2000.00'},
            ],
        )
        with self.assertRaises(NonRefundableItem):
            create_fee_refund(payment=payment, amount='1000.00', reason='Withdrawal')
        self.assertFalse(FeeRefund.objects.exists())

    def test_unitemized_payment_checks_whole_template(self):
        payment = self.pay('1000.00')
        with self.assertRaises(NonRefundableItem):
            create_fee_refund(payment=payment, amount='100.00', reason='Withdrawal')

    def test_second_refund_cannot_exceed_net_payment(self):
        payment = self.pay('3000.00', line_items=[{'fee_breakdown': self.breakdowns['Modules'], 'amount': '3000.00'}])

        refund = create_fee_refund(payment=payment, amount='3000.00', reason='Books returned')
        self.assertTrue(refund.reference_number.startswith('REF-'))

        with self.assertRaises(ExceedsNetPayment):
            create_fee_refund(payment=payment, amount='1.00', reason='Books returned')

        payment.refresh_from_db()
        self.assertEqual(payment.amount_paid, Decimal('3000.00'))

        snapshot = self.snapshot()
        self.assertEqual(snapshot.gross_paid, Decimal('3000.00'))
        self.assertEqual(snapshot.total_refunded, Decimal('3000.00'))
        self.assertEqual(snapshot.total_paid, Decimal('0.00'))
        self.assertEqual(snapshot.payment_status, STATUS_UNPAID)

    def test_refund_needs_reason(self):
        payment = self.pay('500.00', line_items=[{'fee_breakdown': self.breakdowns['Modules'], 'amount': '500.00'}])
        with self.assertRaises(ReasonRequired):
            create_fee_refund(payment=payment, amount='100.00', reason='   ')

    def test_refund_is_immutable(self):
        payment = self.pay('500.00', line_items=[{'fee_breakdown': self.breakdowns['Modules'], 'amount': '500.00'}])
        refund = create_fee_refund(payment=payment, amount='100.00', reason='Partial return')

        refund.amount = Decimal('50.00')
        with self.assertRaises(ValidationError):
            refund.full_clean()
        with self.assertRaises(ValidationError):
            refund.delete()


class FeeAdjustmentTests(FeesBaseTestCase):
    def test_adjustment_validation(self):
        with self.assertRaises(NonPositiveAmount):
            create_fee_adjustment(
                student=self.student,
                academic_year=self.academic_year,
                adjustment_type=FeeAdjustment.TYPE_DISCOUNT,
                amount='0',
                reason='Scholarship',
            )
        with self.assertRaises(ReasonRequired):
            create_fee_adjustment(
                student=self.student,
                academic_year=self.academic_year,
                adjustment_type=FeeAdjustment.TYPE_DISCOUNT,
                amount='100.00',
                reason='',
            )
        with self.assertRaises(InvalidAdjustmentType):
            create_fee_adjustment(
                student=self.student,
                academic_year=self.academic_year,
                adjustment_type='WAIVER',
                amount='100.00',
                reason='Scholarship',
            )
        self.assertFalse(FeeAdjustment.objects.exists())

    def test_opposite_adjustment_reverses(self):
        for adjustment_type in (FeeAdjustment.TYPE_ADDITIONAL, FeeAdjustment.TYPE_DISCOUNT):
            create_fee_adjustment(
                student=self.student,
                academic_year=self.academic_year,
                adjustment_type=adjustment_type,
                amount='300.00',
                reason='Laboratory fee',
            )

        snapshot = self.snapshot()
        self.assertEqual(snapshot.total_adjustments, Decimal('0.00'))
        self.assertEqual(snapshot.total_due, Decimal('25900.00'))


class LedgerStateTests(FeesBaseTestCase):
    def test_stale_revision_conflicts(self):
        before = self.snapshot()
        self.pay('1000.00', expected_revision=before.revision)

        with self.assertRaises(StaleStateConflict) as ctx:
            self.pay('1000.00', expected_revision=before.revision)
        self.assertEqual(ctx.exception.kind, KIND_CONFLICT)
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(FeePayment.objects.count(), 1)

        after = self.snapshot()
        self.assertEqual(after.revision, before.revision + 1)
        self.pay('1000.00', expected_revision=after.revision)

    def test_late_flag_round_trip(self):
        status = set_late_status(student=self.student, academic_year=self.academic_year, is_late=True)
        self.assertTrue(status.is_late_payment)
        self.assertIsNotNone(status.late_since)
        self.assertTrue(self.snapshot().is_late_payment)

        status = set_late_status(student=self.student, academic_year=self.academic_year, is_late=False)
        self.assertIsNone(status.late_since)

        snapshot = self.snapshot()
        self.assertFalse(snapshot.is_late_payment)
        self.assertIsNone(snapshot.late_since)

    def test_overdue_days(self):
        status = set_late_status(
            student=self.student,
            academic_year=self.academic_year,
            is_late=True,
            late_since=timezone.now() - timedelta(days=3),
        )
        self.assertEqual(overdue_days(status), 3)
        self.assertEqual(overdue_days(None), 0)

    def test_setting_late_again_restamps(self):
        earlier = timezone.now() - timedelta(days=10)
        set_late_status(student=self.student, academic_year=self.academic_year, is_late=True, late_since=earlier)

        before = timezone.now()
        status = set_late_status(student=self.student, academic_year=self.academic_year, is_late=True)
        self.assertGreaterEqual(status.late_since, before)
        self.assertEqual(overdue_days(status), 0)

    def test_missing_template_is_zero_base(self):
        student = Student.objects.create(student_number='2025-000999', first_name='Marco', grade_level='Grade 3')

        snapshot = get_ledger_snapshot(student=student, academic_year=self.academic_year)
        self.assertFalse(snapshot.has_fee_template)
        self.assertEqual(snapshot.total_due, Decimal('0'))

        with self.assertRaises(NoFeeTemplate):
            get_ledger_snapshot(student=student, academic_year=self.academic_year, require_template=True)


class FeeAdminTests(FeesBaseTestCase):
    def setUp(self):
        super().setUp()
        self.admin_user = get_user_model().objects.create_superuser(
            username='bursar',
            email='bursar@example.com',
            password='not-used',
        )
        self.client.force_login(self.admin_user)

    def test_financial_records_cannot_be_added(self):
        payment = self.pay('1000.00')
        add_views = {
            'admin:fees_feepayment_add': {'student': self.student.pk, 'amount_paid': '500.00'},
            'admin:fees_feerefund_add': {'payment': payment.pk, 'amount': '5000.00', 'reason': 'Withdrawal'},
            'admin:fees_feeadjustment_add': {'adjustment_type': 'DISCOUNT', 'amount': '100.00', 'reason': 'Sibling'},
            'admin:fees_studentoptionalfee_add': {'student': self.student.pk, 'amount': '250.00'},
            'admin:fees_studentfeestatus_add': {'student': self.student.pk},
        }
        for view_name, data in add_views.items():
            with self.subTest(view=view_name):
                url = reverse(view_name)
                self.assertEqual(self.client.get(url).status_code, 403)
                self.assertEqual(self.client.post(url, data).status_code, 403)

        self.assertEqual(FeePayment.objects.count(), 1)
        self.assertEqual(FeeRefund.objects.count(), 0)
        self.assertEqual(FeeAdjustment.objects.count(), 0)
        self.assertFalse(StudentOptionalFee.objects.exists())

    def test_financial_records_are_viewable(self):
        payment = self.pay('1000.00')
        response = self.client.get(reverse('admin:fees_feepayment_change', args=[payment.pk]))
        self.assertEqual(response.status_code, 200)

    def test_breakdowns_cannot_be_edited_from_template_page(self):
        rows = list(self.template.breakdowns.order_by('order', 'id'))
        data = {
            'academic_year': self.academic_year.pk,
            'grade_level': self.template.grade_level,
            'name': self.template.name,
            'description': self.template.description,
            'is_active': 'on',
            'breakdowns-TOTAL_FORMS': str(len(rows)),
            'breakdowns-INITIAL_FORMS': str(len(rows)),
            'breakdowns-MIN_NUM_FORMS': '0',
            'breakdowns-MAX_NUM_FORMS': '1000',
        }
        for index, row in enumerate(rows):
            prefix = f'breakdowns-{index}'
            data.update({
                f'{prefix}-id': row.pk,
                f'{prefix}-fee_template': self.template.pk,
                f'{prefix}-order': row.order,
                f'{prefix}-description': row.description,
                f'{prefix}-category': row.category,
                f'{prefix}-amount': str(row.amount),
                f'{prefix}-is_refundable': 'on' if row.is_refundable else '',
            })
        data['breakdowns-0-amount'] = '1.00'

        self.client.post(reverse('admin:fees_feetemplate_change', args=[self.template.pk]), data)

        rows[0].refresh_from_db()
        self.template.refresh_from_db()
        self.assertEqual(rows[0].amount, Decimal('3000.00'))
        self.assertEqual(self.template.total_amount, self.template.breakdown_total())
        self.assertEqual(self.snapshot().base_fee, Decimal('25900.00'))


class SeedFeesCommandTests(TestCase):
    def test_seed_creates_templates_and_optional_fees(self):
        call_command('seed_fees', students=1, stdout=StringIO())

        academic_year = AcademicYear.objects.get(name='2025-2026')
        self.assertTrue(academic_year.is_active)
        self.assertEqual(FeeTemplate.objects.filter(academic_year=academic_year).count(), 12)
        self.assertEqual(
            get_fee_template(grade_level='Grade 1', academic_year=academic_year).total_amount,
            Decimal('25900.00'),
        )
        self.assertEqual(
            get_fee_template(grade_level='Kinder 1', academic_year=academic_year).total_amount,
            Decimal('22600.00'),
        )
        self.assertEqual(OptionalFee.objects.filter(academic_year=academic_year).count(), 9)
        self.assertEqual(Student.objects.count(), 12)

        call_command('seed_fees', students=0, stdout=StringIO())
        self.assertEqual(FeeTemplate.objects.filter(academic_year=academic_year).count(), 12)
