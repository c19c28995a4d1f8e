from django.contrib import admin

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


class ServiceManagedAdmin(admin.ModelAdmin):
    """Read-only admin for rows that only the fee services may write."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class FeeBreakdownInline(admin.TabularInline):
    model = FeeBreakdown
    extra = 0
    can_delete = False
    fields = ('order', 'description', 'category', 'amount', 'is_refundable')
    readonly_fields = fields

    # Breakdowns are replaced through create_or_replace_breakdowns so the template total stays in sync.
    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class OptionalFeeVariationInline(admin.TabularInline):
    model = OptionalFeeVariation
    extra = 0


class FeePaymentLineItemInline(admin.TabularInline):
    model = FeePaymentLineItem
    extra = 0
    can_delete = False
    readonly_fields = ('fee_breakdown', 'description', 'amount')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(FeeTemplate)
class FeeTemplateAdmin(admin.ModelAdmin):
    list_display = ('name', 'grade_level', 'academic_year', 'total_amount', 'is_active')
    list_filter = ('academic_year', 'is_active')
    search_fields = ('name', 'grade_level')
    readonly_fields = ('total_amount',)
    inlines = (FeeBreakdownInline,)


@admin.register(OptionalFee)
class OptionalFeeAdmin(admin.ModelAdmin):
    list_display = ('name', 'category', 'academic_year', 'amount', 'has_variations', 'is_active')
    list_filter = ('academic_year', 'category', 'is_active')
    search_fields = ('name',)
    inlines = (OptionalFeeVariationInline,)


@admin.register(StudentOptionalFee)
class StudentOptionalFeeAdmin(ServiceManagedAdmin):
    list_display = ('student', 'optional_fee', 'variation', 'academic_year', 'amount', 'paid_amount', 'is_paid')
    list_filter = ('academic_year', 'is_paid')
    search_fields = ('student__student_number', 'optional_fee__name')


@admin.register(FeePayment)
class FeePaymentAdmin(ServiceManagedAdmin):
    list_display = (
        'reference_number',
        'student',
        'academic_year',
        'amount_paid',
        'payment_date',
        'payment_method',
        'recorded_by',
    )
    list_filter = ('academic_year', 'payment_method')
    search_fields = ('reference_number', 'student__student_number', 'student__last_name')
    inlines = (FeePaymentLineItemInline,)


@admin.register(FeeRefund)
class FeeRefundAdmin(ServiceManagedAdmin):
    list_display = ('reference_number', 'student', 'payment', 'amount', 'refund_date', 'refunded_by')
    list_filter = ('academic_year',)
    search_fields = ('reference_number', 'student__student_number', 'reason')


@admin.register(FeeAdjustment)
class FeeAdjustmentAdmin(ServiceManagedAdmin):
    list_display = ('student', 'academic_year', 'adjustment_type', 'amount', 'reason', 'created_by')
    list_filter = ('academic_year', 'adjustment_type')
    search_fields = ('student__student_number', 'reason')


@admin.register(StudentFeeStatus)
class StudentFeeStatusAdmin(ServiceManagedAdmin):
    list_display = ('student', 'academic_year', 'is_late_payment', 'late_since', 'revision')
    list_filter = ('academic_year', 'is_late_payment')
    search_fields = ('student__student_number',)
