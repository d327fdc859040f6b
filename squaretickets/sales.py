from __future__ import annotations
import logging
from typing import Optional, Tuple

from fastapi import HTTPException

from . import config
from .errors import SquareTicketsError
from .helpers import format_money, is_valid_email, now_ts
from .issuance import tickets_needed
from .model.db import (
    CONTACT_FIELDS, GROUP, GROUP_MEMBER_SLOTS, INDIVIDUAL, PromoCode,
    PurchaseRequest,
)
from .model.store import TicketStore
from .reconcile import ConnectSquare
from .square import Invoice, create_invoice, invoice_request

log = logging.getLogger(__name__)


def parse_type(raw: Optional[str]) -> str:
    return GROUP if raw and GROUP in raw else INDIVIDUAL


def _text(payload: dict, key: str) -> str:
    return str(payload.get(key) or "").strip()


def parse_purchase_request(payload: dict) -> PurchaseRequest:
    """Build an unsaved PurchaseRequest from the checkout form."""
    missing = [f for f in CONTACT_FIELDS if not _text(payload, f)]
    if missing:
        raise HTTPException(400, detail=f"missing {', '.join(missing)}")
    if not is_valid_email(_text(payload, "email")):
        raise HTTPException(400, detail="email must be a valid email address")

    pr_type = parse_type(payload.get("type"))
    pr = PurchaseRequest(
        first_name=_text(payload, "first_name"),
        last_name=_text(payload, "last_name"),
        phone_number=_text(payload, "phone_number"),
        email=_text(payload, "email"),
        type=pr_type,
        promo_code=_text(payload, "promo_code") or None,
    )

    raw_count = payload.get("after_party_count")
    if raw_count not in (None, ""):
        try:
            pr.after_party_count = int(raw_count)
        except (TypeError, ValueError):
            raise HTTPException(400, detail="invalid after_party_count")
        if pr.after_party_count < 0:
            raise HTTPException(400, detail="invalid after_party_count")
    else:
        pr.after_party_count = 0

    members = payload.get("group_members") or []
    if not isinstance(members, list) or len(members) > len(GROUP_MEMBER_SLOTS):
        raise HTTPException(
            400, detail=f"at most {len(GROUP_MEMBER_SLOTS)} group members"
        )
    if pr_type == GROUP:
        for n, member in zip(GROUP_MEMBER_SLOTS, members):
            member = member if isinstance(member, dict) else {}
            email = _text(member, "email")
            if email and not is_valid_email(email):
                raise HTTPException(
                    400, detail=f"group member {n} email is invalid"
                )
            for f in CONTACT_FIELDS:
                setattr(pr, f"group_member{n}_{f}", _text(member, f))
    return pr


def discounted(base: int, promo: Optional[PromoCode]) -> int:
    if promo is None:
        return base
    price = base * (1 - (promo.percent or 0.0)) - (promo.amount or 0)
    return max(0, int(round(price)))


async def price_estimate(
    store: TicketStore, pr_type: str, code: Optional[str]
) -> Tuple[int, Optional[PromoCode]]:
    """Price in cents plus the promo code that applies, if any.

    Promo codes only apply to individual tickets.
    """
    if pr_type == GROUP:
        return config.PRICE_GROUP, None
    promo = await store.get_promo_code(code) if code else None
    return discounted(config.PRICE_INDIVIDUAL, promo), promo


async def validate(store: TicketStore, pr: PurchaseRequest) -> None:
    needed = tickets_needed(pr.type)
    count = await store.count_tickets()
    if count + needed > config.MAX_TICKETS:
        left = max(0, config.MAX_TICKETS - count)
        raise HTTPException(
            400,
            detail=f"Sorry, there are {left} tickets available. This event "
                   f"may be sold out, or you need to check back later.",
        )
    if pr.promo_code and await store.get_promo_code(pr.promo_code) is None:
        raise HTTPException(400, detail=f"Invalid promo code: {pr.promo_code}")


async def send_invoice(
    connect_square: ConnectSquare, pr: PurchaseRequest
) -> Optional[Invoice]:
    req = invoice_request(
        pr, currency=pr.currency, invoice_name=f"{config.EVENT_NAME} Tickets",
        now=now_ts(),
    )
    async with connect_square() as sq:
        invoice = await create_invoice(sq, sq.identity, req)
    log.info("invoice %s created for purchase request %d (%s %s)",
             invoice.token if invoice else "?", pr.id,
             format_money(pr.charged), pr.currency)
    return invoice


async def buy(store: TicketStore, connect_square: ConnectSquare,
              payload: dict) -> dict:
    pr = parse_purchase_request(payload)
    await validate(store, pr)

    price, promo = await price_estimate(store, pr.type, pr.promo_code)
    pr.charged = price
    pr.currency = config.CURRENCY
    pr.created_at = now_ts()
    await store.add_purchase_request(pr)

    if promo is not None and not await store.redeem_promo_code(promo.id):
        # raced with another buyer for the last redemption; keep the price
        log.warning("promo code %s ran out while purchase request %d was "
                    "being created", promo.id, pr.id)

    try:
        invoice = await send_invoice(connect_square, pr)
    except SquareTicketsError as e:
        log.error("creating invoice for purchase request %d failed: %s",
                  pr.id, e)
        raise HTTPException(
            502, detail="could not create the invoice, please try again"
        )

    return {
        "id": pr.id,
        "type": pr.type,
        "charged": pr.charged,
        "currency": pr.currency,
        "invoice": invoice.token if invoice else None,
    }
