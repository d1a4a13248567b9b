"""
Exception types raised by the store, lifecycle and auth modules.

Views catch ``RentalError`` and flash its message instead of returning a
500 page.
"""


class RentalError(Exception):
    """Base class for errors shown to the operator."""

    def __init__(self, message: str = "Error: the operation failed") -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class ValidationError(RentalError):
    """Raised when form input is missing or out of bounds."""


class NotFoundError(RentalError):
    """Raised when a referenced car, customer, rental or payment is missing."""


class CarUnavailableError(RentalError):
    """Raised when a car cannot be rented or its status cannot be changed."""


class PaymentError(RentalError):
    """Raised when a payment would not fit the rental's remaining balance."""


class AuthError(RentalError):
    """Raised on failed sign-in or account updates."""
