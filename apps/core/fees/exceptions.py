"""
Typed rejections raised by the fee ledger services.

Every error is a Django ``ValidationError`` so existing form and admin code keeps
handling it, and carries a stable ``code`` plus a ``kind``:

- ``validation``: caller-fixable input problems, never retried automatically.
- ``invariant``: business-rule rejections, shown to the user verbatim.
- ``conflict``: the state changed under the caller; re-fetch and retry.
"""
from django.core.exceptions import ValidationError


KIND_VALIDATION = 'validation'
KIND_INVARIANT = 'invariant'
KIND_CONFLICT = 'conflict'


class FeeLedgerError(ValidationError):
    kind = KIND_VALIDATION
    code = 'fee_ledger_error'
    default_message = 'Fee ledger operation was rejected.'

    def __init__(self, message=None):
        super().__init__(message or self.default_message, code=self.code)

    @property
    def retryable(self):
        return self.kind == KIND_CONFLICT


class FeeValidationError(FeeLedgerError):
    kind = KIND_VALIDATION


class FeeInvariantError(FeeLedgerError):
    kind = KIND_INVARIANT


class FeeConflictError(FeeLedgerError):
    kind = KIND_CONFLICT


class NonPositiveAmount(FeeValidationError):
    code = 'non_positive_amount'
    default_message = 'Amount must be greater than zero.'


class EmptyBreakdown(FeeValidationError):
    code = 'empty_breakdown'
    default_message = 'A fee template needs at least one breakdown item.'


class InvalidAmount(FeeValidationError):
    code = 'invalid_amount'
    default_message = 'Amount is not valid.'


class InvalidBreakdown(FeeValidationError):
    code = 'invalid_breakdown'
    default_message = 'Breakdown item is not valid.'


class LineItemMismatch(FeeValidationError):
    code = 'line_item_mismatch'
    default_message = 'Line items must add up to the payment amount.'


class UnknownBreakdown(FeeValidationError):
    code = 'unknown_breakdown'
    default_message = "Line item does not reference a breakdown of the student's fee template."


class DuplicateTemplate(FeeValidationError):
    code = 'duplicate_template'
    default_message = 'A fee template already exists for this grade level and academic year.'


class TemplateInUse(FeeValidationError):
    code = 'template_in_use'
    default_message = 'Fee template breakdowns are referenced by recorded payments.'


class NoFeeTemplate(FeeValidationError):
    code = 'no_fee_template'
    default_message = 'No fee template exists for this grade level and academic year.'


class FeeInactive(FeeValidationError):
    code = 'fee_inactive'
    default_message = 'Optional fee is inactive.'


class FeeNotApplicable(FeeValidationError):
    code = 'fee_not_applicable'
    default_message = "Optional fee does not apply to the student's grade level."


class VariationRequired(FeeValidationError):
    code = 'variation_required'
    default_message = 'Select a variation for this optional fee.'


class AlreadyAssigned(FeeValidationError):
    code = 'already_assigned'
    default_message = 'This optional fee is already assigned to the student.'


class AssignmentNotFound(FeeValidationError):
    code = 'assignment_not_found'
    default_message = 'Optional fee is not assigned to the student.'


class ReasonRequired(FeeValidationError):
    code = 'reason_required'
    default_message = 'A reason is required.'


class InvalidAdjustmentType(FeeValidationError):
    code = 'invalid_adjustment_type'
    default_message = 'Adjustment type must be DISCOUNT or ADDITIONAL.'


class DuplicateReference(FeeValidationError):
    code = 'duplicate_reference'
    default_message = 'Reference number is already in use.'


class AmountExceedsBalance(FeeInvariantError):
    code = 'amount_exceeds_balance'
    default_message = 'Payment exceeds the outstanding balance.'


class LineItemExceedsBreakdown(FeeInvariantError):
    code = 'line_item_exceeds_breakdown'
    default_message = 'Line item exceeds the remaining balance of its fee item.'


class ExceedsNetPayment(FeeInvariantError):
    code = 'exceeds_net_payment'
    default_message = 'Refund exceeds the amount still refundable on this payment.'


class NonRefundableItem(FeeInvariantError):
    code = 'non_refundable_item'
    default_message = 'Payment covers a non-refundable fee item.'


class OptionalFeeOverpayment(FeeInvariantError):
    code = 'optional_fee_overpayment'
    default_message = 'Payment exceeds the unpaid amount of this optional fee.'


class StaleStateConflict(FeeConflictError):
    code = 'stale_state_conflict'
    default_message = 'Ledger changed since it was last read. Reload and try again.'
