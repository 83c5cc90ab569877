# app/core/exceptions.py
"""Error taxonomy of the voting transaction engine.

Services raise these; routes translate them to HTTP responses. Integrity
faults (MetadataMismatch) are never retried automatically.
"""


class VotingError(Exception):
    """Base class for voting engine errors"""

    message = "Voting operation failed"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class NotFound(VotingError):
    message = "Resource not found"


class Ineligible(VotingError):
    """Business-rule rejection; the reason is user-correctable"""

    message = "You cannot vote in this category right now"

    def __init__(self, reason, message: str = None):
        super().__init__(message)
        self.reason = reason


class InvalidAmount(VotingError):
    message = "Payment amount must be greater than zero"


class GatewayUnavailable(VotingError):
    """Transient gateway fault (network, timeout, 5xx)"""

    message = "Payment service is temporarily unavailable. Please try again."


class GatewayError(VotingError):
    """Gateway rejected the request"""

    message = "Payment could not be processed"


class ReferenceNotFound(VotingError):
    message = "Payment reference not found"


class InvalidSignature(VotingError):
    message = "Invalid webhook signature"


class DuplicateVote(VotingError):
    """A vote already exists for this (user, category); idempotent success"""

    message = "Vote already recorded for this category"

    def __init__(self, existing=None):
        super().__init__()
        self.existing = existing


class PaymentNotConfirmed(VotingError):
    message = "Payment has not been confirmed"


class MetadataMismatch(VotingError):
    """Payment intent differs from the vote being committed"""

    message = "Payment does not match the requested vote"

    def __init__(self, message: str = None, detail: dict = None):
        super().__init__(message)
        self.detail = detail or {}


class InvalidTransition(VotingError):
    message = "Illegal payment status transition"


class NominationRejected(VotingError):
    """Nomination breaks a category or nominee rule"""

    message = "This nomination is not allowed"


class AlreadyNominated(VotingError):
    message = "Student is already nominated in this category"
