"""Inventory-specific failures that Protean's built-in exceptions do not cover."""

from protean.exceptions import ProteanException


class InsufficientStock(ProteanException):
    """A reservation asked for more units than the caller may claim.

    This is a business-rule rejection rather than a request error: the API
    answers it with ``success: false`` so storefronts can render the message
    inline.
    """

    def __init__(self, message, available=0, pending=0):
        super().__init__(message)
        self.message = message
        self.available = available
        self.pending = pending

    def __str__(self):
        return self.message


class UpstreamUnavailable(ProteanException):
    """The catalog or order store could not be reached."""

    def __init__(self, message="Inventory store temporarily unavailable", retry_after=5):
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after

    def __str__(self):
        return self.message
