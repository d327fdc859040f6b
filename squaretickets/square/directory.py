from __future__ import annotations
import logging
import re
from typing import Dict, Iterable, List, Optional

from ..errors import DecodeError, RemoteError
from .client import INVOICE_LIST_URL, Identity, SquareSession, signed_request
from .models import INVOICE_NUMBER_PREFIX, NO_INVOICE, PAID, Invoice

log = logging.getLogger(__name__)

# the list call pages, but one page this large holds every invoice we make
LIST_COUNT = 10_000_000

_INT = re.compile(r"[+-]?[0-9]+")


async def list_invoices(
        session: SquareSession, identity: Identity) -> List[Invoice]:
    body, code = await signed_request(
        session, identity, INVOICE_LIST_URL,
        {"count": LIST_COUNT, "unit_token": identity.unit_token or ""},
    )
    if code != 200 or not isinstance(body, dict):
        raise RemoteError(
            f"error fetching square invoices {code}, {body}", status=code
        )
    return [Invoice.from_json(d) for d in body.get("invoice") or []]


def decode_invoice_number(number: str) -> int:
    """'PurchaseRequest 42' -> 42. Anything else raises DecodeError.

    Exactly one space separates the two parts; surrounding or repeated
    whitespace does not decode.
    """
    bits = (number or "").split(" ")
    if len(bits) != 2 or bits[0] != INVOICE_NUMBER_PREFIX:
        raise DecodeError(number)
    if not _INT.fullmatch(bits[1]):
        raise DecodeError(number)
    return int(bits[1])


def _preferred(a: Invoice, b: Invoice) -> Invoice:
    # a paid invoice always wins, otherwise the newest one; the token
    # breaks ties so the pick does not depend on list order
    if (a.state == PAID) != (b.state == PAID):
        return a if a.state == PAID else b
    ka = (a.created_at or 0, a.token)
    kb = (b.created_at or 0, b.token)
    return a if ka >= kb else b


def index_by_purchase_request(
        invoices: Iterable[Invoice]) -> Dict[int, Invoice]:
    """Map purchase request ids to their invoice.

    Invoices whose number does not decode belong to something else in the
    same merchant account and are skipped.
    """
    index: Dict[int, Invoice] = {}
    for invoice in invoices:
        try:
            pr_id = decode_invoice_number(invoice.merchant_invoice_number)
        except DecodeError:
            log.debug("skipping invoice %s (%r)", invoice.token,
                      invoice.merchant_invoice_number)
            continue
        seen = index.get(pr_id)
        index[pr_id] = invoice if seen is None else _preferred(seen, invoice)
    return index


def invoice_status(invoice: Optional[Invoice]) -> str:
    """'<STATE> - <DELIVERY_STATUS>', or NO_INVOICE when nothing matched."""
    return NO_INVOICE if invoice is None else invoice.status
