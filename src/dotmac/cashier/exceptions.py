"""
Cashier exceptions.

Every error carries a machine-readable code, an HTTP status, context and a
recovery hint so callers can surface it without further translation.
"""

from typing import Any


class BillingError(Exception):
    """
    Base cashier error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


# ============================================================================
# Processor errors
# ============================================================================


class ProcessorError(BillingError):
    """Errors reported by, or while talking to, the payment processor."""

    def __init__(
        self,
        message: str,
        error_code: str = "PROCESSOR_ERROR",
        status_code: int = 502,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(message, error_code, status_code, context, recovery_hint)


class ProcessorRejectedError(ProcessorError):
    """The processor declined or failed to validate the request. Not retried."""

    def __init__(
        self,
        message: str,
        processor_code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        context = dict(context or {})
        if processor_code:
            context["processor_code"] = processor_code
        super().__init__(
            message,
            "PROCESSOR_REJECTED",
            status_code=402,
            context=context,
            recovery_hint="Check the payment token and request details; declines are final",
        )
        self.processor_code = processor_code


class TransientNetworkError(ProcessorError):
    """Timeout or connection failure that is worth retrying."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, "PROCESSOR_TRANSIENT", status_code=503, context=context)


class ProcessorUnavailableError(ProcessorError):
    """Retries on transient failure were exhausted."""

    def __init__(self, message: str, attempts: int | None = None) -> None:
        context = {}
        if attempts is not None:
            context["attempts"] = attempts
        super().__init__(
            message,
            "PROCESSOR_UNAVAILABLE",
            status_code=503,
            context=context,
            recovery_hint="The payment processor is unreachable; retry later",
        )


# ============================================================================
# Subscription errors
# ============================================================================


class SubscriptionError(BillingError):
    """Subscription-related errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message,
            "SUBSCRIPTION_ERROR",
            status_code=400,
            context=context,
            recovery_hint=recovery_hint,
        )


class SubscriptionNotFoundError(SubscriptionError):
    """Subscription not found error."""

    def __init__(
        self, message: str, subscription_id: str | None = None, customer_id: str | None = None
    ):
        context = {}
        if subscription_id:
            context["subscription_id"] = subscription_id
        if customer_id:
            context["customer_id"] = customer_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the subscription ID and ensure it exists",
        )
        self.error_code = "SUBSCRIPTION_NOT_FOUND"
        self.status_code = 404


class DuplicateSlotError(SubscriptionError):
    """The customer already holds a live subscription in this slot."""

    def __init__(self, message: str, customer_id: str, slot: str) -> None:
        super().__init__(
            message,
            context={"customer_id": customer_id, "slot": slot},
            recovery_hint="Swap the existing subscription's plan or choose another slot name",
        )
        self.error_code = "DUPLICATE_SLOT"
        self.status_code = 409


class SubscriptionStateError(SubscriptionError):
    """Invalid subscription state transition error."""

    def __init__(self, message: str, current_state: str, requested_state: str) -> None:
        super().__init__(
            message,
            context={"current_state": current_state, "requested_state": requested_state},
            recovery_hint=f"Cannot transition from {current_state} to {requested_state}. Check subscription status first.",
        )
        self.error_code = "INVALID_SUBSCRIPTION_STATE"
        self.status_code = 409


class InvalidStateTransitionError(SubscriptionStateError):
    """A lifecycle operation was requested from a state that does not allow it."""


class PlanNotFoundError(SubscriptionError):
    """Subscription plan not found error."""

    def __init__(self, message: str, plan_id: str | None = None) -> None:
        context = {}
        if plan_id:
            context["plan_id"] = plan_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Register the plan before subscribing customers to it",
        )
        self.error_code = "PLAN_NOT_FOUND"
        self.status_code = 404


class DuplicatePlanError(SubscriptionError):
    """Plan identifier already registered."""

    def __init__(self, message: str, plan_id: str) -> None:
        super().__init__(
            message,
            context={"plan_id": plan_id},
            recovery_hint="Plans are immutable; register a new identifier instead",
        )
        self.error_code = "DUPLICATE_PLAN"
        self.status_code = 409


# ============================================================================
# Customer / invoice / webhook errors
# ============================================================================


class CustomerNotFoundError(BillingError):
    """Customer not found, or not yet linked to the processor."""

    def __init__(self, message: str, customer_id: str | None = None) -> None:
        context = {}
        if customer_id:
            context["customer_id"] = customer_id
        super().__init__(
            message,
            "CUSTOMER_NOT_FOUND",
            status_code=404,
            context=context,
            recovery_hint="Create the processor customer before billing it",
        )


class InvoiceError(BillingError):
    """Invoice-related errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, "INVOICE_ERROR", status_code=400, context=context, recovery_hint=recovery_hint
        )


class InvoiceNotFoundError(InvoiceError):
    """Invoice not found error."""

    def __init__(self, message: str, invoice_id: str | None = None) -> None:
        context = {}
        if invoice_id:
            context["invoice_id"] = invoice_id

        super().__init__(
            message, context=context, recovery_hint="Verify the invoice ID and ensure it exists"
        )
        self.error_code = "INVOICE_NOT_FOUND"
        self.status_code = 404


class WebhookError(BillingError):
    """Malformed or unauthenticated webhook envelope."""

    def __init__(
        self, message: str, webhook_type: str | None = None, provider: str | None = None
    ) -> None:
        context = {}
        if webhook_type:
            context["webhook_type"] = webhook_type
        if provider:
            context["provider"] = provider

        super().__init__(
            message,
            "WEBHOOK_ERROR",
            status_code=400,
            context=context,
            recovery_hint="Check webhook configuration and retry the webhook delivery",
        )
