"""Error taxonomy for the Square session client and the reconciliation loop.

Cycle-level errors (``AuthError``, ``TransportError``, ``RemoteError``) abort
one reconciliation cycle; the next tick starts over. The remaining errors are
scoped to a single invoice, purchase request or ticket.
"""
from typing import Optional, Sequence


class SquareTicketsError(Exception):
    """Base class for everything raised by squaretickets."""


class AuthError(SquareTicketsError):
    """Login rejected, or the session was not accepted by Square."""


class BootstrapError(AuthError):
    """Merchant or unit token could not be fetched after login."""


class TransportError(SquareTicketsError):
    """Network failure or timeout talking to an external service."""


class RemoteError(SquareTicketsError):
    """Square answered, but reported a failure in the response body."""

    def __init__(self, message: str, status: Optional[int] = None,
                 title: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.title = title


class DecodeError(SquareTicketsError):
    """A merchant invoice number is not of the form 'PurchaseRequest <id>'."""

    def __init__(self, invoice_number: str) -> None:
        super().__init__(f"cannot decode invoice number {invoice_number!r}")
        self.invoice_number = invoice_number


class IssuanceError(SquareTicketsError):
    """Ticket persistence failed for a purchase request.

    ``created`` lists the ids of tickets that were persisted before the
    failure and could not be deleted again. Those tickets are not linked
    to the purchase request.
    """

    def __init__(self, purchase_request_id: int,
                 created: Sequence[str] = ()) -> None:
        super().__init__(
            f"ticket issuance failed for purchase request "
            f"{purchase_request_id} after {len(created)} ticket(s)"
        )
        self.purchase_request_id = purchase_request_id
        self.created = list(created)


class DeliveryError(SquareTicketsError):
    """The mail provider refused a message or a mailing list request."""
