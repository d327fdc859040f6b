"""Ticket emails.

The purchaser (first ticket of a set) gets every link in the group so the
tickets can be forwarded; everyone else only gets their own.
"""
from __future__ import annotations
import logging
import os
from typing import Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from . import config
from .errors import DeliveryError
from .mail import MailAdapter
from .model.db import Ticket

log = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "templates")
SIGNATURE = "The CSSS"

_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html"]),
    keep_trailing_newline=True,
)


def ticket_url(ticket: Ticket, base_url: str = config.PUBLIC_URL) -> str:
    return f"{base_url.rstrip('/')}/ticket/{ticket.id}"


def render(ticket: Ticket, group: Sequence[Ticket], *,
           event_name: str = config.EVENT_NAME,
           base_url: str = config.PUBLIC_URL) -> tuple[str, str, str]:
    """Subject, html and text body for one ticket holder."""
    primary = bool(group) and group[0].id == ticket.id
    shown = list(group) if primary else [ticket]
    ctx = {
        "ticket": ticket,
        "shown": shown,
        "event_name": event_name,
        "signature": SIGNATURE,
        "ticket_url": lambda t: ticket_url(t, base_url),
    }
    html = _env.get_template("ticket_email.html").render(**ctx)
    text = _env.get_template("ticket_email.txt").render(**ctx)
    return f"{event_name} Tickets", html, text


async def notify(mailer: MailAdapter, ticket: Ticket,
                 group: Sequence[Ticket], **kw) -> str:
    subject, html, text = render(ticket, group, **kw)
    try:
        return await mailer.send(ticket.email, subject, html, text)
    except DeliveryError:
        raise
    except Exception as e:
        raise DeliveryError(f"sending ticket {ticket.id}: {e}") from e


async def notify_all(mailer: MailAdapter, tickets: Sequence[Ticket],
                     **kw) -> tuple[int, int]:
    """Email every holder. Failures are logged and never retried."""
    sent = failed = 0
    for ticket in tickets:
        try:
            await notify(mailer, ticket, tickets, **kw)
            sent += 1
        except DeliveryError as e:
            failed += 1
            log.warning("send email err for ticket %s (%s): %s",
                        ticket.id, ticket.email, e)
    return sent, failed
