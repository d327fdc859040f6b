"""Rebuild the announcement mailing lists from the purchase requests.

Two lists are managed, both addressed at the mail domain:

  everyone  every purchaser
  unpaid    purchasers whose invoice is still UNPAID at Square

Old copies of the managed lists are deleted first, so people who paid
since the last sync drop off ``unpaid``. Lists that would be empty are not
created.
"""
from __future__ import annotations
import logging
from typing import Dict, Iterable, List, Optional

from .mail import MailgunMailer
from .model.db import PurchaseRequest
from .model.store import TicketStore
from .reconcile import ConnectSquare
from .square import UNPAID, Invoice, index_by_purchase_request, list_invoices

log = logging.getLogger(__name__)

EVERYONE = "everyone"
UNPAID_LIST = "unpaid"
MANAGED = (EVERYONE, UNPAID_LIST)
DESCRIPTION = "Automatically created, do not edit manually"


def member(pr: PurchaseRequest) -> dict:
    return {"name": pr.first_name, "address": pr.email, "vars": {}}


def build_lists(prs: Iterable[PurchaseRequest],
                invoices: Dict[int, Invoice]) -> Dict[str, List[dict]]:
    lists: Dict[str, List[dict]] = {}
    for pr in prs:
        names = [EVERYONE]
        invoice: Optional[Invoice] = invoices.get(pr.id)
        if invoice is not None and invoice.state == UNPAID:
            names.append(UNPAID_LIST)
        for name in names:
            lists.setdefault(name, []).append(member(pr))
    return lists


async def sync_mailing_lists(store: TicketStore,
                             connect_square: ConnectSquare,
                             mailgun: MailgunMailer) -> Dict[str, int]:
    """Replace the managed lists. Returns member counts by list address."""
    prs = await store.list_purchase_requests()
    async with connect_square() as sq:
        index = index_by_purchase_request(
            await list_invoices(sq, sq.identity)
        )
    lists = build_lists(prs, index)

    managed = {f"{name}@{mailgun.domain}" for name in MANAGED}
    for address in await mailgun.list_addresses():
        if address in managed:
            log.info("%s: deleting old list", address)
            await mailgun.delete_list(address)

    counts: Dict[str, int] = {}
    for name, members in lists.items():
        address = f"{name}@{mailgun.domain}"
        if not await mailgun.has_list(address):
            log.info("%s: creating mailing list", address)
            await mailgun.create_list(address, description=DESCRIPTION)
        await mailgun.add_members(address, members)
        log.info("%s: %d member(s)", address, len(members))
        counts[address] = len(members)
    return counts
