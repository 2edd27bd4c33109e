"""
Error taxonomy for the fulfillment engine.

Every error carries the HTTP status it maps to; ``app.py`` renders them as
``{"error": message, ...extra}``. Validation, authorization and conflict
errors are deterministic given current state and are never retried.
"""


class FulfillmentError(Exception):
    status_code = 500
    code = "INTERNAL"

    def __init__(self, message=None, **extra):
        super().__init__(message or self.__class__.__name__)
        self.message = message or "Internal server error"
        self.extra = extra

    def as_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        body.update(self.extra)
        return body


class ValidationError(FulfillmentError):
    status_code = 400
    code = "VALIDATION"


class BookingNotSchedulableError(ValidationError):
    code = "NOT_SCHEDULABLE"


class ForbiddenError(FulfillmentError):
    status_code = 403
    code = "FORBIDDEN"


class PaymentRequiredError(FulfillmentError):
    status_code = 402
    code = "PAYMENT_REQUIRED"

    def __init__(self, message=None, unlock_price=None, **extra):
        if unlock_price is not None:
            extra["unlock_price"] = str(unlock_price)
        super().__init__(message or "Unlock payment or active subscription required", **extra)
        self.unlock_price = unlock_price


class NotFoundError(FulfillmentError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(FulfillmentError):
    status_code = 409
    code = "CONFLICT"


class InvalidTransitionError(ConflictError):
    code = "INVALID_TRANSITION"


class SlotUnavailableError(ConflictError):
    code = "SLOT_UNAVAILABLE"

    def __init__(self, message=None, **extra):
        super().__init__(message or "Slot unavailable", **extra)


class GatewayUnavailableError(FulfillmentError):
    status_code = 503
    code = "GATEWAY_UNAVAILABLE"

    def __init__(self, message=None, **extra):
        super().__init__(message or "Payment gateway unavailable", **extra)


class GatewayPaymentNotFoundError(FulfillmentError):
    # raised by the gateway client; the webhook handler acknowledges it
    status_code = 404
    code = "GATEWAY_PAYMENT_NOT_FOUND"


class InternalError(FulfillmentError):
    pass


class DeliveryError(Exception):
    """A notification channel reported failure; the retry queue picks it up."""
