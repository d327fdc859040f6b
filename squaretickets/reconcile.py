"""Poll Square and settle purchase requests against their invoices.

One cycle logs in from scratch, lists every invoice, and walks the
purchase requests that have neither tickets nor a canceled invoice:

  no invoice            -> NO_INVOICE, nothing to do
  tickets already there -> ALREADY_ISSUED, nothing to do
  PAID                  -> issue tickets, email every holder
  UNPAID and stale      -> cancel the invoice at Square
  anything else         -> PENDING, look again next cycle

The loop is its own retry mechanism: a cycle that fails to log in or to
list invoices is abandoned and the next tick starts over.
"""
from __future__ import annotations
import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import (
    AsyncContextManager, Callable, Dict, List, Optional, Tuple
)

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import AuthError, IssuanceError, RemoteError, TransportError
from .helpers import now_ts
from .infra.sql import Gated
from .issuance import issue_tickets
from .mail import MailAdapter
from .model.db import PurchaseRequest
from .model.store import TicketStore
from .notify import notify_all
from .square import (
    NO_INVOICE, PAID, UNPAID, Invoice, SquareSession, cancel_invoice,
    index_by_purchase_request, list_invoices,
)

log = logging.getLogger(__name__)

STALE_AFTER_SECONDS = 24 * 3600

# per purchase request outcome of one cycle
ISSUED = "ISSUED"
ALREADY_ISSUED = "ALREADY_ISSUED"
CANCELED = "CANCELED"
PENDING = "PENDING"
ISSUE_FAILED = "ISSUE_FAILED"
CANCEL_FAILED = "CANCEL_FAILED"


class Action(enum.Enum):
    NONE = "none"
    ISSUE = "issue"
    CANCEL = "cancel"


def decide(
    pr: PurchaseRequest, ticket_count: int, invoice: Optional[Invoice],
    now: float, stale_after: float = STALE_AFTER_SECONDS,
) -> Tuple[Action, str]:
    if invoice is None:
        return Action.NONE, NO_INVOICE
    if ticket_count > 0:
        return Action.NONE, ALREADY_ISSUED
    if invoice.state == PAID:
        return Action.ISSUE, ISSUED
    if invoice.state == UNPAID and now - pr.created_at >= stale_after:
        return Action.CANCEL, CANCELED
    return Action.NONE, PENDING


@dataclass
class CycleReport:
    started_at: float
    statuses: Dict[int, str] = field(default_factory=dict)
    issued: Dict[int, List[str]] = field(default_factory=dict)
    canceled: List[str] = field(default_factory=list)
    notified: int = 0
    notify_failed: int = 0
    invoices_seen: int = 0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


ConnectSquare = Callable[[], AsyncContextManager[SquareSession]]


class Reconciler:
    def __init__(
        self, *,
        sessionmaker: async_sessionmaker[AsyncSession],
        gated: Gated,
        connect_square: ConnectSquare,
        mailer: MailAdapter,
        stale_after: float = STALE_AFTER_SECONDS,
        clock: Callable[[], float] = now_ts,
        notify_kw: Optional[dict] = None,
    ) -> None:
        self.sessionmaker = sessionmaker
        self.gated = gated
        self.connect_square = connect_square
        self.mailer = mailer
        self.stale_after = stale_after
        self.clock = clock
        self.notify_kw = notify_kw or {}

    async def run_cycle(self) -> CycleReport:
        report = CycleReport(started_at=self.clock())
        try:
            async with self.connect_square() as sq:
                invoices = await list_invoices(sq, sq.identity)
                report.invoices_seen = len(invoices)
                index = index_by_purchase_request(invoices)
                async with self.sessionmaker() as db:
                    store = TicketStore(db=db, gated=self.gated)
                    unresolved = await store.list_unresolved()
                    # detached: a rollback later in the cycle must not
                    # expire the requests still waiting their turn
                    db.expunge_all()
                    for pr in unresolved:
                        await self._reconcile(
                            store, sq, pr, index.get(pr.id), report
                        )
        except (AuthError, TransportError, RemoteError) as e:
            report.error = e
            log.error("square err, skipping cycle: %s", e)
        except SQLAlchemyError as e:
            report.error = e
            log.exception("db err, skipping cycle")
        return report

    async def _reconcile(
        self, store: TicketStore, sq: SquareSession, pr: PurchaseRequest,
        invoice: Optional[Invoice], report: CycleReport,
    ) -> None:
        # fresh count: the HTTP side may have touched tickets since listing
        count = await store.count_tickets_for(pr.id)
        action, status = decide(
            pr, count, invoice, self.clock(), self.stale_after
        )

        if action is Action.ISSUE:
            log.info("found paid invoice %s for purchase request %d",
                     invoice.token, pr.id)
            try:
                tickets = await issue_tickets(store, pr)
            except IssuanceError as e:
                status = ISSUE_FAILED
                log.error(
                    "issuing tickets for purchase request %d (invoice %s) "
                    "failed; unlinked tickets left behind: %s",
                    pr.id, invoice.token, e.created or "none",
                    exc_info=e.__cause__,
                )
            else:
                report.issued[pr.id] = [t.id for t in tickets]
                sent, failed = await notify_all(
                    self.mailer, tickets, **self.notify_kw
                )
                report.notified += sent
                report.notify_failed += failed

        elif action is Action.CANCEL:
            log.info("invoice %s for purchase request %d is stale, "
                     "canceling", invoice.token, pr.id)
            try:
                await cancel_invoice(sq, sq.identity, invoice.token)
            except RemoteError as e:
                status = CANCEL_FAILED
                log.error("square invoice cancel err for %s "
                          "(purchase request %d): %s", invoice.token, pr.id, e)
            else:
                await store.mark_canceled(pr.id, self.clock())
                report.canceled.append(invoice.token)

        report.statuses[pr.id] = status

    async def run_forever(self, interval: float) -> None:
        """Run cycles back to back, one tick every ``interval`` seconds.

        A slow cycle delays the next tick; cycles never overlap.
        """
        log.info("polling square every %.1fs", interval)
        while True:
            t0 = time.monotonic()
            try:
                report = await self.run_cycle()
                if report.ok and (report.issued or report.canceled):
                    log.info(
                        "cycle done: %d invoice(s), issued for %s, "
                        "canceled %s", report.invoices_seen,
                        sorted(report.issued), report.canceled,
                    )
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("reconciliation cycle crashed")
            elapsed = time.monotonic() - t0
            await asyncio.sleep(max(0.0, interval - elapsed))
