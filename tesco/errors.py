"""
Exception hierarchy for the Tesco grocery client.

Every error the library raises on purpose is defined here so callers can catch
them precisely:

- TescoApiError: the server answered with an unexpected status code, or the
  transport failed to deliver a usable response
- NotAuthenticatedError: the operation needs a non-anonymous login (or the
  acting customer does not own the basket being changed)
- InvalidArgumentError: malformed product id, out-of-bounds quantity, or a
  non-Product passed where a Product was required
- OutOfRangeError / InvalidPageError: index or page number outside a listing
- NotFoundError: the referenced product or basket line does not exist
"""

from typing import Any, Dict, Optional


class TescoApiError(RuntimeError):
    """
    Raised when the Tesco API reports an unclassified failure.

    Attributes:
        status_code: StatusCode returned by the server (None for transport failures)
        response: Decoded response body, if one was received
    """

    default_message = "An unspecified error has occurred on the server side."

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        response: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message or self.default_message)
        self.status_code = status_code
        self.response = response


class NotAuthenticatedError(TescoApiError):
    """Raised when an operation requires an authenticated, non-anonymous customer."""

    default_message = "You must be an authenticated non-anonymous user."


class InvalidArgumentError(ValueError):
    """Raised when an argument is malformed or outside its allowed range."""
    pass


class PaginationError(IndexError):
    """Base class for paginated listing lookups that fall outside the listing."""
    pass


class OutOfRangeError(PaginationError):
    """Raised when an item index exceeds the number of products in a listing."""
    pass


class InvalidPageError(PaginationError):
    """Raised when a page reference is not a page of the listing."""
    pass


class NotFoundError(LookupError):
    """Raised when a product or basket line cannot be found."""
    pass
