# square/__init__.py
from .client import (
    Credentials, Identity, SquareSession, authenticate, bootstrap,
    signed_request, connect, create_invoice, cancel_invoice,
)
from .directory import (
    list_invoices, decode_invoice_number, index_by_purchase_request,
    invoice_status,
)
from .models import NO_INVOICE, PAID, UNPAID, Invoice, invoice_request


__all__ = [
    "Credentials", "Identity", "SquareSession", "authenticate", "bootstrap",
    "signed_request", "connect", "create_invoice", "cancel_invoice",
    "list_invoices", "decode_invoice_number", "index_by_purchase_request",
    "invoice_status", "NO_INVOICE", "PAID", "UNPAID", "Invoice",
    "invoice_request",
]
