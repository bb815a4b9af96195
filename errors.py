# Giglet error taxonomy
#
#   validation   → 400, fix the request
#   not found    → 404
#   eligibility  → 403, creator must change state (verify, grow, level up)
#   conflict     → 400, gig taken / full / closed, balance too low
#   transient    → 503, store busy or down, safe to retry
#   provider     → 502, Stripe said no, safe to retry


class GigletError(Exception):
    status_code = 500
    code = "internal_error"
    retryable = False

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message, "retryable": self.retryable}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(GigletError):
    status_code = 400
    code = "validation_error"


class NotFoundError(GigletError):
    status_code = 404
    code = "not_found"


class EligibilityError(GigletError):
    status_code = 403
    code = "not_eligible"


class ConflictError(GigletError):
    status_code = 400
    code = "conflict"


class StoreUnavailableError(GigletError):
    status_code = 503
    code = "store_unavailable"
    retryable = True


class PaymentProviderError(GigletError):
    status_code = 502
    code = "payment_provider_error"
    retryable = True


class EvaluatorUnavailableError(GigletError):
    status_code = 503
    code = "evaluator_unavailable"
    retryable = True
