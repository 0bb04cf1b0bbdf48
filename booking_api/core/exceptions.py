"""Exception types raised by the booking API adapters."""


class BookingError(Exception):
    """Base class for all booking API errors."""


class PaymentGatewayError(BookingError):
    """The payment gateway could not create a payment or report its status."""


class CallbackValidationError(BookingError):
    """A gateway callback failed authorization or could not be parsed."""


class NotificationError(BookingError):
    """An outbound e-mail could not be delivered."""


class OTPError(BookingError):
    """A one-time code could not be issued."""
