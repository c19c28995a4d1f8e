from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q, Sum
from django.utils import timezone

from apps.core.academic_sessions.models import AcademicYear
from apps.core.students.models import Student
from apps.core.utils.managers import StudentYearManager

from .ledger import ADJUSTMENT_ADDITIONAL, ADJUSTMENT_DISCOUNT


class FinancialRecordModel(models.Model):
    class Meta:
        abstract = True

    def delete(self, *args, **kwargs):
        raise ValidationError('Financial records cannot be deleted. Record a reversing entry instead.')


def _changed_fields(instance, field_names):
    previous = type(instance).objects.filter(pk=instance.pk).values(*field_names).first()
    if not previous:
        return []
    return [field for field in field_names if previous[field] != getattr(instance, field)]


class FeeTemplate(models.Model):
    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.PROTECT,
        related_name='fee_templates',
    )
    grade_level = models.CharField(max_length=40)
    name = models.CharField(max_length=150)
    description = models.TextField(blank=True)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['grade_level', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['academic_year', 'grade_level'],
                name='unique_fee_template_per_grade_year',
            ),
            models.CheckConstraint(
                condition=Q(total_amount__gte=0),
                name='fee_template_total_non_negative',
            ),
        ]
        indexes = [
            models.Index(fields=['academic_year', 'is_active']),
        ]

    def breakdown_total(self):
        value = self.breakdowns.aggregate(total=Sum('amount')).get('total')
        return value or Decimal('0.00')

    def clean(self):
        super().clean()
        if self.name:
            self.name = self.name.strip()
        if not self.name:
            raise ValidationError({'name': 'Template name is required.'})
        if self.grade_level:
            self.grade_level = self.grade_level.strip()
        if not self.grade_level:
            raise ValidationError({'grade_level': 'Grade level is required.'})

        if self.pk and self.breakdowns.exists() and self.total_amount != self.breakdown_total():
            raise ValidationError({'total_amount': 'Total amount must equal the sum of the breakdown items.'})

    def delete(self, *args, **kwargs):
        has_payments = FeePayment.objects.filter(
            academic_year_id=self.academic_year_id,
            student__grade_level=self.grade_level,
        ).exists()
        if has_payments:
            raise ValidationError('Fee template cannot be deleted while payments are recorded against it.')
        if self.is_active:
            self.is_active = False
            self.save(update_fields=['is_active', 'updated_at'])

    def __str__(self):
        return f"{self.name} ({self.grade_level}, {self.academic_year.name})"


class FeeBreakdown(models.Model):
    CATEGORY_TUITION = 'TUITION'
    CATEGORY_BOOKS = 'BOOKS'
    CATEGORY_UNIFORM = 'UNIFORM'
    CATEGORY_LABORATORY = 'LABORATORY'
    CATEGORY_LIBRARY = 'LIBRARY'
    CATEGORY_ID_CARD = 'ID_CARD'
    CATEGORY_EXAM = 'EXAM'
    CATEGORY_REGISTRATION = 'REGISTRATION'
    CATEGORY_MISC = 'MISC'
    CATEGORY_CHOICES = (
        (CATEGORY_TUITION, 'Tuition'),
        (CATEGORY_BOOKS, 'Books'),
        (CATEGORY_UNIFORM, 'Uniform'),
        (CATEGORY_LABORATORY, 'Laboratory'),
        (CATEGORY_LIBRARY, 'Library'),
        (CATEGORY_ID_CARD, 'ID Card'),
        (CATEGORY_EXAM, 'Exam'),
        (CATEGORY_REGISTRATION, 'Registration'),
        (CATEGORY_MISC, 'Miscellaneous'),
    )

    fee_template = models.ForeignKey(
        FeeTemplate,
        on_delete=models.CASCADE,
        related_name='breakdowns',
    )
    description = models.CharField(max_length=255)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default=CATEGORY_MISC)
    order = models.PositiveIntegerField(default=0)
    is_refundable = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['order', 'id']
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name='fee_breakdown_amount_positive',
            ),
        ]

    def clean(self):
        super().clean()
        if self.description:
            self.description = self.description.strip()
        if not self.description:
            raise ValidationError({'description': 'Breakdown description is required.'})
        if self.amount is None or self.amount <= 0:
            raise ValidationError({'amount': 'Breakdown amount must be greater than zero.'})

    def __str__(self):
        return f"{self.description}: {self.amount}"


class OptionalFee(models.Model):
    CATEGORY_ID_CARD = 'ID_CARD'
    CATEGORY_UNIFORM = 'UNIFORM'
    CATEGORY_BOOKS = 'BOOKS'
    CATEGORY_MISCELLANEOUS = 'MISCELLANEOUS'
    CATEGORY_GRADUATION = 'GRADUATION'
    CATEGORY_CERTIFICATION = 'CERTIFICATION'
    CATEGORY_OTHER = 'OTHER'
    CATEGORY_CHOICES = (
        (CATEGORY_ID_CARD, 'ID Card'),
        (CATEGORY_UNIFORM, 'Uniform'),
        (CATEGORY_BOOKS, 'Books'),
        (CATEGORY_MISCELLANEOUS, 'Miscellaneous'),
        (CATEGORY_GRADUATION, 'Graduation'),
        (CATEGORY_CERTIFICATION, 'Certification'),
        (CATEGORY_OTHER, 'Other'),
    )

    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.PROTECT,
        related_name='optional_fees',
    )
    name = models.CharField(max_length=150)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default=CATEGORY_OTHER)
    amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    has_variations = models.BooleanField(default=False)
    applicable_grade_levels = models.JSONField(default=list, blank=True)  # empty = every grade
    is_active = models.BooleanField(default=True)
    sort_order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['sort_order', 'name', 'id']
        indexes = [
            models.Index(fields=['academic_year', 'is_active']),
        ]

    def applies_to(self, grade_level):
        return not self.applicable_grade_levels or grade_level in self.applicable_grade_levels

    def clean(self):
        super().clean()
        if self.name:
            self.name = self.name.strip()
        if not self.name:
            raise ValidationError({'name': 'Optional fee name is required.'})
        if not isinstance(self.applicable_grade_levels, list):
            raise ValidationError({'applicable_grade_levels': 'Applicable grade levels must be a list.'})
        if self.amount is not None and self.amount < 0:
            raise ValidationError({'amount': 'Amount cannot be negative.'})
        if not self.has_variations and self.amount is None:
            raise ValidationError({'amount': 'Amount is required when the fee has no variations.'})

    def delete(self, *args, **kwargs):
        if self.is_active:
            self.is_active = False
            self.save(update_fields=['is_active', 'updated_at'])

    def __str__(self):
        return f"{self.name} ({self.academic_year.name})"


class OptionalFeeVariation(models.Model):
    optional_fee = models.ForeignKey(
        OptionalFee,
        on_delete=models.CASCADE,
        related_name='variations',
    )
    name = models.CharField(max_length=150)
    amount = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        ordering = ['amount', 'id']
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gte=0),
                name='optional_fee_variation_amount_non_negative',
            ),
        ]

    def clean(self):
        super().clean()
        if self.name:
            self.name = self.name.strip()
        if not self.name:
            raise ValidationError({'name': 'Variation name is required.'})
        if self.amount is None or self.amount < 0:
            raise ValidationError({'amount': 'Variation amount cannot be negative.'})

    def __str__(self):
        return f"{self.optional_fee.name} - {self.name}"


class StudentOptionalFee(models.Model):
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='optional_fees',
    )
    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.PROTECT,
        related_name='student_optional_fees',
    )
    objects = StudentYearManager()

    optional_fee = models.ForeignKey(
        OptionalFee,
        on_delete=models.PROTECT,
        related_name='assignments',
    )
    variation = models.ForeignKey(
        OptionalFeeVariation,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assignments',
    )
    # Locked in at assignment time; later edits to the fee do not change it.
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    is_paid = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'academic_year', 'optional_fee'],
                name='unique_optional_fee_per_student_year',
            ),
            models.CheckConstraint(
                condition=Q(amount__gte=0),
                name='student_optional_fee_amount_non_negative',
            ),
            models.CheckConstraint(
                condition=Q(paid_amount__gte=0) & Q(paid_amount__lte=F('amount')),
                name='student_optional_fee_paid_within_amount',
            ),
        ]

    def clean(self):
        super().clean()
        if self.amount is None or self.amount < 0:
            raise ValidationError({'amount': 'Amount cannot be negative.'})
        if self.paid_amount is None or self.paid_amount < 0:
            raise ValidationError({'paid_amount': 'Paid amount cannot be negative.'})
        if self.paid_amount > self.amount:
            raise ValidationError({'paid_amount': 'Paid amount cannot exceed the fee amount.'})
        if self.variation_id and self.variation.optional_fee_id != self.optional_fee_id:
            raise ValidationError({'variation': 'Variation must belong to the selected optional fee.'})

    def __str__(self):
        return f"{self.student.student_number} - {self.optional_fee.name}"


class FeePayment(FinancialRecordModel):
    METHOD_CASH = 'CASH'
    METHOD_CHECK = 'CHECK'
    METHOD_BANK_TRANSFER = 'BANK_TRANSFER'
    METHOD_GCASH = 'GCASH'
    METHOD_PAYMAYA = 'PAYMAYA'
    METHOD_ONLINE = 'ONLINE'
    PAYMENT_METHOD_CHOICES = (
        (METHOD_CASH, 'Cash'),
        (METHOD_CHECK, 'Check'),
        (METHOD_BANK_TRANSFER, 'Bank Transfer'),
        (METHOD_GCASH, 'GCash'),
        (METHOD_PAYMAYA, 'PayMaya'),
        (METHOD_ONLINE, 'Online'),
    )

    student = models.ForeignKey(
        Student,
        on_delete=models.PROTECT,
        related_name='fee_payments',
    )
    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.PROTECT,
        related_name='fee_payments',
    )
    objects = StudentYearManager()

    amount_paid = models.DecimalField(max_digits=12, decimal_places=2)
    payment_date = models.DateField(default=timezone.localdate)
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES, default=METHOD_CASH)
    reference_number = models.CharField(max_length=60, unique=True)
    remarks = models.TextField(blank=True)
    recorded_by = models.CharField(max_length=120, default='system')
    created_at = models.DateTimeField(auto_now_add=True)

    IMMUTABLE_FIELDS = (
        'student_id',
        'academic_year_id',
        'amount_paid',
        'payment_date',
        'payment_method',
        'reference_number',
        'recorded_by',
    )

    class Meta:
        ordering = ['created_at', 'id']
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_paid__gt=0),
                name='fee_payment_amount_positive',
            ),
        ]
        indexes = [
            models.Index(fields=['student', 'academic_year', 'payment_date']),
            models.Index(fields=['academic_year', 'payment_method']),
        ]

    def clean(self):
        super().clean()

        if self.amount_paid is None or self.amount_paid <= 0:
            raise ValidationError({'amount_paid': 'Payment amount must be greater than zero.'})

        if not (self.reference_number or '').strip():
            raise ValidationError({'reference_number': 'Reference number is required.'})

        if self.pk and _changed_fields(self, self.IMMUTABLE_FIELDS):
            raise ValidationError('Fee payments are immutable. Only remarks can be edited.')

    @property
    def refunded_amount(self):
        return sum((refund.amount for refund in self.refunds.all()), Decimal('0.00'))

    @property
    def net_amount(self):
        return Decimal(self.amount_paid) - self.refunded_amount

    def __str__(self):
        return f"Payment {self.reference_number} - {self.student.student_number}"


class FeePaymentLineItem(FinancialRecordModel):
    payment = models.ForeignKey(
        FeePayment,
        on_delete=models.CASCADE,
        related_name='line_items',
    )
    fee_breakdown = models.ForeignKey(
        FeeBreakdown,
        on_delete=models.PROTECT,
        related_name='payment_line_items',
    )
    description = models.CharField(max_length=255)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['id']
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name='fee_line_item_amount_positive',
            ),
        ]

    def clean(self):
        super().clean()

        if self.amount is None or self.amount <= 0:
            raise ValidationError({'amount': 'Line item amount must be greater than zero.'})

        if self.fee_breakdown_id and self.payment_id:
            if self.fee_breakdown.fee_template.academic_year_id != self.payment.academic_year_id:
                raise ValidationError({'fee_breakdown': 'Fee item must belong to the payment academic year.'})
            if self.amount > self.fee_breakdown.amount:
                raise ValidationError({'amount': 'Line item cannot exceed the fee item amount.'})

    def __str__(self):
        return f"{self.description}: {self.amount}"


class FeeRefund(FinancialRecordModel):
    student = models.ForeignKey(
        Student,
        on_delete=models.PROTECT,
        related_name='fee_refunds',
    )
    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.PROTECT,
        related_name='fee_refunds',
    )
    objects = StudentYearManager()

    payment = models.ForeignKey(
        FeePayment,
        on_delete=models.PROTECT,
        related_name='refunds',
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    reason = models.CharField(max_length=255)
    refund_date = models.DateField(default=timezone.localdate)
    reference_number = models.CharField(max_length=60, unique=True)
    refunded_by = models.CharField(max_length=120, default='system')
    created_at = models.DateTimeField(auto_now_add=True)

    IMMUTABLE_FIELDS = (
        'student_id',
        'academic_year_id',
        'payment_id',
        'amount',
        'reason',
        'refund_date',
        'reference_number',
        'refunded_by',
    )

    class Meta:
        ordering = ['created_at', 'id']
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name='fee_refund_amount_positive',
            ),
        ]
        indexes = [
            models.Index(fields=['student', 'academic_year', 'refund_date']),
        ]

    def clean(self):
        super().clean()

        if self.payment_id:
            if self.payment.student_id != self.student_id:
                raise ValidationError({'payment': 'Payment student mismatch.'})
            if self.payment.academic_year_id != self.academic_year_id:
                raise ValidationError({'payment': 'Payment academic year mismatch.'})

        if self.amount is None or self.amount <= 0:
            raise ValidationError({'amount': 'Refund amount must be greater than zero.'})

        if not (self.reason or '').strip():
            raise ValidationError({'reason': 'Refund reason is required.'})

        if self.pk and _changed_fields(self, self.IMMUTABLE_FIELDS):
            raise ValidationError('Fee refunds are immutable.')

    def __str__(self):
        return f"Refund {self.reference_number} - Payment {self.payment.reference_number}"


class FeeAdjustment(FinancialRecordModel):
    TYPE_DISCOUNT = ADJUSTMENT_DISCOUNT
    TYPE_ADDITIONAL = ADJUSTMENT_ADDITIONAL
    ADJUSTMENT_TYPE_CHOICES = (
        (TYPE_DISCOUNT, 'Discount'),
        (TYPE_ADDITIONAL, 'Additional'),
    )

    student = models.ForeignKey(
        Student,
        on_delete=models.PROTECT,
        related_name='fee_adjustments',
    )
    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.PROTECT,
        related_name='fee_adjustments',
    )
    objects = StudentYearManager()

    adjustment_type = models.CharField(max_length=20, choices=ADJUSTMENT_TYPE_CHOICES)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    reason = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    created_by = models.CharField(max_length=120, default='system')
    created_at = models.DateTimeField(auto_now_add=True)

    IMMUTABLE_FIELDS = (
        'student_id',
        'academic_year_id',
        'adjustment_type',
        'amount',
        'reason',
        'description',
        'created_by',
    )

    class Meta:
        ordering = ['created_at', 'id']
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name='fee_adjustment_amount_positive',
            ),
        ]
        indexes = [
            models.Index(fields=['student', 'academic_year', 'adjustment_type']),
        ]

    @property
    def signed_amount(self):
        if self.adjustment_type == self.TYPE_DISCOUNT:
            return -Decimal(self.amount)
        return Decimal(self.amount)

    def clean(self):
        super().clean()

        if self.amount is None or self.amount <= 0:
            raise ValidationError({'amount': 'Adjustment amount must be greater than zero.'})

        if not (self.reason or '').strip():
            raise ValidationError({'reason': 'Adjustment reason is required.'})

        if self.pk and _changed_fields(self, self.IMMUTABLE_FIELDS):
            raise ValidationError('Fee adjustments are immutable. Record an opposite adjustment instead.')

    def __str__(self):
        return f"{self.get_adjustment_type_display()} {self.amount} - {self.student.student_number}"


class StudentFeeStatus(models.Model):
    """Non-derived per student-year state: the late flag and the write revision."""

    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='fee_statuses',
    )
    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.PROTECT,
        related_name='student_fee_statuses',
    )
    objects = StudentYearManager()

    is_late_payment = models.BooleanField(default=False)
    late_since = models.DateTimeField(null=True, blank=True)
    revision = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['academic_year', 'student']
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'academic_year'],
                name='unique_fee_status_per_student_year',
            ),
        ]
        indexes = [
            models.Index(fields=['academic_year', 'is_late_payment']),
        ]

    def clean(self):
        super().clean()
        if self.late_since and not self.is_late_payment:
            raise ValidationError({'late_since': 'Late date is only kept while the account is flagged late.'})

    def __str__(self):
        return f"{self.student.student_number} ({self.academic_year.name})"
