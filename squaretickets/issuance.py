"""Turn a paid purchase request into its tickets.

A ticket set counts as issued only once ``attach_tickets`` has linked it to
the purchase request. If persisting fails partway, the tickets written so
far are deleted again and the purchase request still has zero tickets, so
the next cycle issues a fresh set. Tickets that cannot be deleted either
are reported on the IssuanceError.
"""
from __future__ import annotations
import logging
import random
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.attributes import set_committed_value

from .errors import IssuanceError
from .helpers import now_ts
from .model.db import GROUP, GROUP_MEMBER_SLOTS, PurchaseRequest, Ticket
from .model.store import TicketStore

log = logging.getLogger(__name__)

MAX_NAME_ATTEMPTS = 10

ADVERBS = [
    "abnormally", "absolutely", "actually", "badly", "boldly", "briefly",
    "calmly", "certainly", "cheaply", "closely", "deeply", "eagerly",
    "early", "evenly", "fairly", "finally", "firmly", "freely", "gently",
    "gladly", "greatly", "happily", "highly", "honestly", "hugely",
    "jointly", "kindly", "largely", "lively", "loudly", "mainly", "merely",
    "mostly", "neatly", "nicely", "openly", "partly", "plainly", "quickly",
    "quietly", "rapidly", "rarely", "really", "simply", "slowly",
    "smoothly", "surely", "sweetly", "truly", "vastly", "warmly", "wildly",
]
ADJECTIVES = [
    "able", "amazed", "amused", "apt", "awake", "bold", "brave", "bright",
    "busy", "calm", "clean", "clever", "cool", "cosmic", "crisp", "dear",
    "eager", "epic", "fair", "fast", "fine", "fit", "fond", "free", "fresh",
    "game", "glad", "golden", "good", "grand", "great", "happy", "hip",
    "holy", "honest", "humble", "ideal", "jolly", "keen", "kind", "light",
    "live", "lucky", "merry", "mint", "modest", "neat", "nice", "noble",
    "polite", "proud", "quick", "quiet", "rapid", "ready", "sharp", "smart",
    "solid", "sound", "steady", "sunny", "super", "sweet", "tidy", "vital",
    "warm", "wise", "witty",
]
NOUNS = [
    "ant", "ape", "bass", "bat", "bear", "bee", "bird", "bison", "boar",
    "buck", "bug", "calf", "cat", "chimp", "clam", "cod", "colt", "crab",
    "crow", "deer", "dodo", "doe", "dog", "dove", "duck", "eagle", "eel",
    "elk", "emu", "ewe", "falcon", "fawn", "finch", "fish", "flea", "fly",
    "fox", "frog", "gator", "gnat", "gnu", "goat", "goose", "hare", "hawk",
    "hen", "heron", "horse", "hound", "ibex", "jay", "koala", "lamb",
    "lark", "lion", "llama", "lynx", "mole", "moose", "moth", "mouse",
    "mule", "newt", "owl", "ox", "panda", "pig", "pony", "pug", "quail",
    "ram", "raven", "robin", "seal", "shark", "sheep", "slug", "snail",
    "swan", "tiger", "toad", "trout", "wasp", "whale", "wolf", "wren", "yak",
]

_rng = random.SystemRandom()


def ticket_name(words: int = 3, sep: str = "-") -> str:
    """Human readable id like 'happily-brave-otter'."""
    pools = ([ADVERBS] * max(0, words - 2)) + [ADJECTIVES, NOUNS]
    return sep.join(_rng.choice(pool) for pool in pools[-words:])


async def unique_ticket_name(store: TicketStore) -> str:
    for _ in range(MAX_NAME_ATTEMPTS):
        name = ticket_name()
        if not await store.ticket_exists(name):
            return name
        log.info("ticket id %s already taken, regenerating", name)
    raise RuntimeError("could not generate an unused ticket id")


def tickets_needed(purchase_type: str) -> int:
    return 1 + len(GROUP_MEMBER_SLOTS) if purchase_type == GROUP else 1


async def _discard(store: TicketStore, pr_id: int, ids: List[str]
                   ) -> List[str]:
    """Delete an unlinked partial set. Returns the ids that are left behind."""
    if not ids:
        return []
    try:
        await store.delete_tickets(ids)
    except SQLAlchemyError:
        log.exception("could not discard partial ticket set %s for "
                      "purchase request %d", ids, pr_id)
        return ids
    return []


async def issue_tickets(store: TicketStore, pr: PurchaseRequest
                        ) -> List[Ticket]:
    """Persist one ticket per holder, then link the set in one update.

    Callers must only invoke this for a purchase request with zero linked
    tickets; this function does not re-check.
    """
    # a failed store call rolls the session back and expires its instances,
    # so the failure path only works with plain values
    pr_id = pr.id
    created: List[Ticket] = []
    ids: List[str] = []
    try:
        for holder in pr.holders():
            ticket = Ticket(
                id=await unique_ticket_name(store),
                purchase_request_id=None,
                first_name=holder["first_name"] or "",
                last_name=holder["last_name"] or "",
                phone_number=holder["phone_number"] or "",
                email=holder["email"] or "",
                created_at=now_ts(),
            )
            await store.add_ticket(ticket)
            created.append(ticket)
            ids.append(ticket.id)

        linked = await store.attach_tickets(pr_id, ids)
    except (SQLAlchemyError, RuntimeError) as e:
        raise IssuanceError(pr_id, await _discard(store, pr_id, ids)) from e

    if linked != len(ids):
        raise IssuanceError(pr_id, await _discard(store, pr_id, ids))
    # the rows are linked already; record it without dirtying the instances
    for t in created:
        set_committed_value(t, "purchase_request_id", pr_id)
    log.info("issued %d ticket(s) for purchase request %d: %s",
             len(ids), pr_id, ", ".join(ids))
    return created
