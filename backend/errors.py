"""Ticketing error taxonomy.

Every error carries a user-facing ``reason`` and a short machine ``code``.
The validation orchestrator turns them into a structured result; the HTTP
layer maps the rest onto status codes.
"""


class TicketingError(Exception):
    code = "ticketing_error"
    default_reason = "Ticketing error"

    def __init__(self, reason: str | None = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class MalformedPayload(TicketingError):
    code = "malformed_payload"
    default_reason = "Invalid QR code format"


class VersionMismatch(TicketingError):
    code = "version_mismatch"
    default_reason = "Incompatible QR code version"


class SignatureInvalid(TicketingError):
    code = "signature_invalid"
    default_reason = "Invalid QR code signature - ticket may be forged"


class Expired(TicketingError):
    code = "expired"
    default_reason = "QR code has expired"


class NotFound(TicketingError):
    code = "not_found"
    default_reason = "Ticket not found"


class InvalidTransition(TicketingError):
    code = "invalid_transition"

    def __init__(self, current_status: str, target_status: str | None = None):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(f"Ticket is {current_status}")


class BiometricMismatch(TicketingError):
    code = "biometric_mismatch"
    default_reason = "Biometric verification failed"


class CollaboratorFailure(TicketingError):
    code = "collaborator_failure"
    default_reason = "Validation error occurred"


class PaymentDeclined(TicketingError):
    code = "payment_declined"
    default_reason = "Payment failed"
