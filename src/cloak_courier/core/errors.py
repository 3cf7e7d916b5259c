"""Error taxonomy shared by the token store, ledger adapter and coordinator.

Every failure that leaves a service boundary is one of these classes. The HTTP
layer maps them to status codes in :mod:`cloak_courier.api.errors`.
"""

from __future__ import annotations


class CourierError(RuntimeError):
    """Base exception for all coordinator failures."""

    retryable: bool = False


# --- Token errors -------------------------------------------------------------------


class TokenError(CourierError):
    """Base class for user-facing, non-retryable token failures."""


class InvalidToken(TokenError):
    """Raised when a token string is not a well-formed 64-character hex value."""


class TokenGone(TokenError):
    """A token that cannot be used anymore.

    Subclasses carry the precise reason for logging; on the wire every subclass
    renders the same generic response so probing clients learn nothing.
    """

    reason: str = "gone"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or f"Token is no longer valid ({self.reason})")


class TokenExpired(TokenGone):
    reason = "expired"


class TokenConsumed(TokenGone):
    reason = "consumed"


class TokenRevoked(TokenGone):
    reason = "revoked"


class TokenNotFound(TokenGone):
    reason = "unknown"


class TokenCollision(CourierError):
    """Raised when freshly generated token material already exists.

    With 256 bits of randomness this signals a broken entropy source or a
    misconfigured store, never a condition to retry around.
    """


# --- Ledger errors ------------------------------------------------------------------


class LedgerError(CourierError):
    """Base class for failures talking to the ledger."""


class LedgerUnavailable(LedgerError):
    """The ledger could not be reached. Callers may retry."""

    retryable = True


class LedgerRejected(LedgerError):
    """The ledger answered with a non-success status.

    Indicates a protocol or authorization bug on our side; never retried.
    """

    def __init__(self, status_code: int, body: str, message: str | None = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Ledger API error ({status_code}): {body}")


class LedgerNotReady(LedgerError):
    """Raised when template identifiers are requested before discovery ran."""


# --- Identity and delivery errors ---------------------------------------------------


class UnknownIdentity(CourierError):
    """Raised when a handle has no registered ledger identity."""

    def __init__(self, handle: str) -> None:
        self.handle = handle
        super().__init__(f"No ledger identity registered for {handle!r}")


class UnknownDelivery(CourierError):
    """Raised when a delivery is unknown, or not addressed to the caller."""

    def __init__(self, delivery_id: str) -> None:
        self.delivery_id = delivery_id
        super().__init__(f"Unknown delivery {delivery_id!r}")


class DeliveryRejected(CourierError):
    """Validation failure while preparing or submitting a delivery."""


class DeliveryFailed(CourierError):
    """Terminal failure after a send token was spent.

    The token cannot be reused; the sender has to request a new link.
    """

    def __init__(self, message: str, cause: LedgerError) -> None:
        self.cause = cause
        self.retryable = cause.retryable
        super().__init__(message)


class ServiceKeyError(CourierError):
    """Raised when a service API call carries a missing or wrong key."""


class NotificationError(CourierError):
    """The notifier could not post or update a message."""

    retryable = True
