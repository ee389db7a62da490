class SlotwatchError(Exception):
    """Base exception for the slotwatch client."""


class ConfigurationError(SlotwatchError):
    """Raised when a session is constructed with an unusable configuration."""


class AuthenticationError(SlotwatchError):
    """Raised when the paid schema fetch or its payment fails."""


class PaymentRejected(AuthenticationError):
    """Raised when the server challenges again after a signed retry."""


class SigningError(SlotwatchError):
    """Raised when a payment payload cannot be built for a requirement."""


class ProtocolShapeError(SlotwatchError):
    """Raised when a decoded message does not match its expected shape."""


class TransientNetworkError(SlotwatchError):
    """Raised for socket drops and failed renewal round trips."""


class LookupFailure(SlotwatchError):
    """Raised by the pool lookup client; callers treat it as no result."""
