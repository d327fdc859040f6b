from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..model.db import PurchaseRequest

INVOICE_NUMBER_PREFIX = "PurchaseRequest"

PAID = "PAID"
UNPAID = "UNPAID"
NO_INVOICE = "NO_INVOICE"


def invoice_number(pr_id: int) -> str:
    return f"{INVOICE_NUMBER_PREFIX} {pr_id}"


def _instant(t: Optional[Dict[str, Any]]) -> Optional[float]:
    # square times look like {"instant_usec": ..., "timezone_offset_min": ..}
    if not t or t.get("instant_usec") is None:
        return None
    return int(t["instant_usec"]) / 1_000_000


def due_on(ts: float) -> Dict[str, int]:
    d = datetime.fromtimestamp(ts, tz=timezone.utc)
    return {"day_of_month": d.day, "month_of_year": d.month, "year": d.year}


def money(amount: int, currency: str) -> Dict[str, Any]:
    return {"amount": int(amount), "currency_code": currency}


@dataclass
class Invoice:
    """An invoice as listed by Square. Never persisted locally."""
    token: str
    merchant_invoice_number: str = ""
    state: str = ""
    delivery_status: str = ""
    due_on: Optional[Dict[str, int]] = None
    created_at: Optional[float] = None
    payer_name: str = ""
    payer_email: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "Invoice":
        return cls(
            token=d.get("token") or "",
            merchant_invoice_number=d.get("merchant_invoice_number") or "",
            state=d.get("state") or "",
            delivery_status=d.get("delivery_status") or "",
            due_on=d.get("due_on"),
            created_at=_instant(d.get("created_at")),
            payer_name=d.get("payer_name") or "",
            payer_email=d.get("payer_email") or "",
            raw=d,
        )

    @property
    def status(self) -> str:
        return f"{self.state} - {self.delivery_status}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "merchant_invoice_number": self.merchant_invoice_number,
            "state": self.state,
            "delivery_status": self.delivery_status,
            "due_on": self.due_on,
            "created_at": self.created_at,
            "payer_name": self.payer_name,
            "payer_email": self.payer_email,
        }


def invoice_request(
    pr: PurchaseRequest, *, currency: str, invoice_name: str, now: float,
) -> Dict[str, Any]:
    """Cart payload for InvoiceService/Create, a single custom-amount item.

    The invoice is due 24h after ``now``. ``unit_token`` is filled in by
    the client from the bootstrapped identity.
    """
    amt = money(pr.charged, currency)
    none = money(0, currency)
    item = {
        "quantity": "1",
        "custom_note": f"{invoice_name} - {pr.type}",
        "configuration": {
            "backing_type": "CUSTOM_AMOUNT",
            "item_variation_price_money": amt,
            "selected_options": {"discount": [], "fee": []},
        },
        "amounts": {
            "discount_money": none,
            "gross_sales_money": amt,
            "item_variation_price_money": amt,
            "item_variation_price_times_quantity_money": amt,
            "tax_money": none,
            "total_money": amt,
        },
    }
    return {
        "additional_recipient_email": [],
        "cart": {
            "amounts": {
                "discount_money": none,
                "tax_money": none,
                "tip_money": none,
                "total_money": amt,
            },
            "line_items": {
                "itemization": [item],
                "discount": [],
                "fee": [],
            },
        },
        "description": "",
        "due_on": due_on(now + 24 * 3600),
        "invoice_name": invoice_name,
        "merchant_invoice_number": invoice_number(pr.id),
        "payer": {
            "display_name": f"{pr.first_name} {pr.last_name}",
            "email": pr.email,
            "token": None,
        },
        "requested_money": amt,
        "is_draft": False,
    }
