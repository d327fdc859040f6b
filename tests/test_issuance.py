import re

import pytest
from sqlalchemy.exc import OperationalError

from squaretickets import issuance
from squaretickets.errors import IssuanceError
from squaretickets.issuance import (
    issue_tickets, ticket_name, tickets_needed, unique_ticket_name,
)
from squaretickets.model.db import Ticket
from squaretickets.model.store import TicketStore

from conftest import NOW, add_purchase_request


def test_ticket_name_is_three_words():
    for _ in range(50):
        name = ticket_name()
        assert re.fullmatch(r"[a-z]+-[a-z]+-[a-z]+", name), name
        adverb, adjective, noun = name.split("-")
        assert adverb in issuance.ADVERBS
        assert adjective in issuance.ADJECTIVES
        assert noun in issuance.NOUNS


def test_tickets_needed():
    assert tickets_needed("Individual") == 1
    assert tickets_needed("Group") == 4


async def test_unique_ticket_name_regenerates_on_collision(store,
                                                           monkeypatch):
    await store.add_ticket(Ticket(id="taken-name-here", created_at=NOW))
    names = iter(["taken-name-here", "taken-name-here", "fresh-name-here"])
    monkeypatch.setattr(issuance, "ticket_name", lambda: next(names))
    assert await unique_ticket_name(store) == "fresh-name-here"


async def test_unique_ticket_name_gives_up(store, monkeypatch):
    await store.add_ticket(Ticket(id="taken-name-here", created_at=NOW))
    monkeypatch.setattr(issuance, "ticket_name", lambda: "taken-name-here")
    with pytest.raises(RuntimeError):
        await unique_ticket_name(store)


async def test_issue_individual(store):
    pr = await add_purchase_request(store, 42)
    tickets = await issue_tickets(store, pr)
    assert len(tickets) == 1
    assert tickets[0].purchase_request_id == 42
    assert [t.id for t in await store.tickets_for(42)] == [tickets[0].id]


async def test_issue_group_keeps_holder_order(store):
    pr = await add_purchase_request(store, 9, type="Group")
    tickets = await issue_tickets(store, pr)
    assert [t.first_name for t in tickets] == \
        ["Ada", "Grace", "Alan", "Edsger"]
    assert len({t.id for t in tickets}) == 4
    assert await store.count_tickets_for(9) == 4


async def test_exhausted_names_are_an_issuance_error(store, monkeypatch):
    pr = await add_purchase_request(store, 9, type="Group")
    await store.add_ticket(Ticket(id="only-name-left", created_at=NOW))
    names = iter(["a-b-c", "d-e-f"])

    def next_name():
        return next(names, "only-name-left")

    monkeypatch.setattr(issuance, "ticket_name", next_name)
    with pytest.raises(IssuanceError) as exc:
        await issue_tickets(store, pr)
    assert exc.value.purchase_request_id == 9
    # the two tickets written before the failure are deleted again
    assert exc.value.created == []
    assert await store.count_tickets_for(9) == 0
    assert [t.id for t in await store.list_tickets()] == ["only-name-left"]


async def test_failed_insert_rolls_back_and_discards_the_set(
        database, store, monkeypatch):
    pr = await add_purchase_request(store, 9, type="Group")
    SessionAsync, gated = database
    async with SessionAsync() as other:
        await TicketStore(db=other, gated=gated).add_ticket(
            Ticket(id="sold-before-now", created_at=NOW)
        )

    # the third name skips the existence check and collides on insert
    names = iter(["one-one-one", "two-two-two", "sold-before-now"])

    async def fake_unique_name(_store):
        return next(names)

    monkeypatch.setattr(issuance, "unique_ticket_name", fake_unique_name)
    with pytest.raises(IssuanceError) as exc:
        await issue_tickets(store, pr)

    assert exc.value.purchase_request_id == 9
    assert exc.value.created == []
    assert [t.id for t in await store.list_tickets()] == ["sold-before-now"]
    assert await store.count_tickets_for(9) == 0


async def test_undeletable_partial_set_is_reported(store, monkeypatch):
    pr = await add_purchase_request(store, 3)

    async def broken_attach(self, pr_id, ticket_ids):
        raise OperationalError("UPDATE tickets", {}, Exception("locked"))

    async def broken_delete(self, ticket_ids):
        raise OperationalError("DELETE FROM tickets", {}, Exception("locked"))

    monkeypatch.setattr(TicketStore, "attach_tickets", broken_attach)
    monkeypatch.setattr(TicketStore, "delete_tickets", broken_delete)
    with pytest.raises(IssuanceError) as exc:
        await issue_tickets(store, pr)

    (left,) = exc.value.created
    assert (await store.get_ticket(left)).purchase_request_id is None
