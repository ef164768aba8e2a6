"""Failure kinds shared by the auth, ledger and ticket components.

Each error carries the HTTP status and the stable reason code the API
returns for it; the handler in ``main`` renders them.
"""


class TicketingError(Exception):
    status_code = 500
    reason_code = "INTERNAL"
    default_message = "internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(TicketingError):
    status_code = 400
    reason_code = "INVALID_INPUT"
    default_message = "invalid input"


class NotFound(TicketingError):
    status_code = 404
    reason_code = "NOT_FOUND"
    default_message = "not found"


class NonceNotFound(NotFound):
    # clients already treat this one as a bad request
    status_code = 400
    reason_code = "NONCE_NOT_FOUND"
    default_message = "nonce not found for address"


class EventNotFound(NotFound):
    reason_code = "EVENT_NOT_FOUND"
    default_message = "event not found"


class TierNotFound(NotFound):
    reason_code = "TIER_NOT_FOUND"
    default_message = "ticket tier not found"


class TicketNotFound(NotFound):
    reason_code = "TICKET_NOT_FOUND"
    default_message = "ticket not found - invalid token id"


class Conflict(TicketingError):
    status_code = 409
    reason_code = "CONFLICT"
    default_message = "conflict"


class SoldOut(Conflict):
    status_code = 400
    reason_code = "SOLD_OUT"
    default_message = "no tickets available"


class AlreadyRedeemed(Conflict):
    reason_code = "REPLAY"
    default_message = "ticket already redeemed"


class PurchaseInProgress(Conflict):
    reason_code = "IDEMPOTENCY_IN_PROGRESS"
    default_message = "a purchase with this Idempotency-Key is still in progress"


class Unauthorized(TicketingError):
    status_code = 401
    reason_code = "UNAUTHORIZED"
    default_message = "unauthorized"


class SignatureMismatch(Unauthorized):
    reason_code = "SIGNATURE_MISMATCH"
    default_message = "signature mismatch"


class InvalidSession(Unauthorized):
    reason_code = "INVALID_SESSION"
    default_message = "invalid or expired session token"


class RateLimited(TicketingError):
    status_code = 429
    reason_code = "RATE_LIMITED"
    default_message = "too many requests"


class VerificationFailed(TicketingError):
    reason_code = "VERIFICATION_FAILED"
    default_message = "verification failed"
