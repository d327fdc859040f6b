from __future__ import annotations
from typing import Dict, List, Optional, Sequence
from sqlalchemy import select, func, text, bindparam, exists
from sqlalchemy.ext.asyncio import AsyncSession

from ..infra.sql import Gated
from .db import PurchaseRequest, PromoCode, Ticket


class TicketStore:
    """Persistence for purchase requests, promo codes and tickets.

    Every method is one gated transaction. Nothing spans two calls, so
    callers that chain operations must be able to re-check their state.
    """

    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    # ---- purchase requests
    async def add_purchase_request(
            self, pr: PurchaseRequest) -> PurchaseRequest:
        async with self.gated():
            async with self.db.begin():
                self.db.add(pr)
                await self.db.flush()
        return pr

    async def get_purchase_request(
            self, pr_id: int) -> Optional[PurchaseRequest]:
        async with self.gated():
            async with self.db.begin():
                return await self.db.get(
                    PurchaseRequest, pr_id, populate_existing=True
                )

    async def list_purchase_requests(self) -> List[PurchaseRequest]:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    select(PurchaseRequest)
                    .execution_options(populate_existing=True)
                    .order_by(PurchaseRequest.id)
                )
                return list(result.scalars().all())

    async def list_unresolved(self) -> List[PurchaseRequest]:
        """Purchase requests with no linked tickets that were not canceled."""
        has_tickets = exists().where(
            Ticket.purchase_request_id == PurchaseRequest.id
        )
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    select(PurchaseRequest)
                    .execution_options(populate_existing=True)
                    .where(PurchaseRequest.canceled_at.is_(None))
                    .where(~has_tickets)
                    .order_by(PurchaseRequest.id)
                )
                return list(result.scalars().all())

    async def mark_canceled(self, pr_id: int, ts: float) -> bool:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    text("""
                        UPDATE purchase_requests SET canceled_at = :ts
                        WHERE id = :id AND canceled_at IS NULL
                    """),
                    {"id": pr_id, "ts": ts},
                )
        return result.rowcount == 1

    # ---- tickets
    async def add_ticket(self, ticket: Ticket) -> Ticket:
        async with self.gated():
            async with self.db.begin():
                self.db.add(ticket)
        return ticket

    async def ticket_exists(self, ticket_id: str) -> bool:
        async with self.gated():
            async with self.db.begin():
                found = await self.db.scalar(
                    select(Ticket.id).where(Ticket.id == ticket_id)
                )
        return found is not None

    async def attach_tickets(
            self, pr_id: int, ticket_ids: Sequence[str]) -> int:
        """Link a freshly issued set of tickets to its purchase request."""
        stmt = text("""
            UPDATE tickets SET purchase_request_id = :pr_id
            WHERE id IN :ids AND purchase_request_id IS NULL
        """).bindparams(bindparam("ids", expanding=True))
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    stmt, {"pr_id": pr_id, "ids": list(ticket_ids)}
                )
        return result.rowcount

    async def count_tickets_for(self, pr_id: int) -> int:
        async with self.gated():
            async with self.db.begin():
                n = await self.db.scalar(
                    select(func.count(Ticket.id))
                    .where(Ticket.purchase_request_id == pr_id)
                )
        return int(n or 0)

    async def tickets_for(self, pr_id: int) -> List[Ticket]:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    select(Ticket)
                    .execution_options(populate_existing=True)
                    .where(Ticket.purchase_request_id == pr_id)
                    .order_by(Ticket.created_at)
                )
                return list(result.scalars().all())

    async def count_tickets(self) -> int:
        async with self.gated():
            async with self.db.begin():
                n = await self.db.scalar(select(func.count(Ticket.id)))
        return int(n or 0)

    async def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        async with self.gated():
            async with self.db.begin():
                return await self.db.get(
                    Ticket, ticket_id, populate_existing=True
                )

    async def list_tickets(self) -> List[Ticket]:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    select(Ticket)
                    .execution_options(populate_existing=True)
                    .order_by(Ticket.created_at)
                )
                return list(result.scalars().all())

    async def delete_tickets(self, ticket_ids: Sequence[str]) -> int:
        stmt = text(
            "DELETE FROM tickets WHERE id IN :ids"
        ).bindparams(bindparam("ids", expanding=True))
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    stmt, {"ids": list(ticket_ids)}
                )
        return result.rowcount

    # ---- promo codes
    async def get_promo_code(self, code: str) -> Optional[PromoCode]:
        """Look up a redeemable code. Exhausted codes count as not found."""
        if not code:
            return None
        async with self.gated():
            async with self.db.begin():
                pc = await self.db.get(
                    PromoCode, code, populate_existing=True
                )
        if pc is None or pc.count <= 0:
            return None
        return pc

    async def redeem_promo_code(self, code: str) -> bool:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    text("""
                        UPDATE promo_codes SET count = count - 1
                        WHERE id = :id AND count > 0
                    """),
                    {"id": code},
                )
        return result.rowcount == 1

    async def list_promo_codes(self) -> List[PromoCode]:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    select(PromoCode)
                    .execution_options(populate_existing=True)
                    .order_by(PromoCode.id)
                )
                return list(result.scalars().all())

    async def add_promo_code(self, pc: PromoCode) -> PromoCode:
        async with self.gated():
            async with self.db.begin():
                self.db.add(pc)
        return pc

    async def update_promo_code(
            self, code: str, changes: Dict[str, object]
    ) -> Optional[PromoCode]:
        async with self.gated():
            async with self.db.begin():
                pc = await self.db.get(
                    PromoCode, code, populate_existing=True
                )
                if pc is None:
                    return None
                for k, v in changes.items():
                    setattr(pc, k, v)
        return pc
