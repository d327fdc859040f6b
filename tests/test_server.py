import httpx
import pytest

from squaretickets import config
from squaretickets.model.db import PromoCode, Ticket
from squaretickets.model.store import TicketStore
from squaretickets.reconcile import ISSUED, Reconciler
from squaretickets.server import app, get_store, square_connector

from conftest import NOW, add_purchase_request, broken_square, invoice_json

BUYER = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "phone_number": "604-555-0100",
    "type": "Individual",
}


@pytest.fixture
async def client(database, connect_square):
    SessionAsync, gated = database

    async def _store():
        async with SessionAsync() as session:
            yield TicketStore(db=session, gated=gated)

    app.dependency_overrides[get_store] = _store
    app.dependency_overrides[square_connector] = lambda: connect_square
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport,
                                 base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
async def admin(client):
    r = await client.post("/api/admin/login", json={
        "username": config.ADMIN_USERNAME,
        "password": config.ADMIN_PASSWORD,
    })
    assert r.status_code == 200
    return client


async def test_buy_creates_invoice(client, fake_square):
    r = await client.post("/api/buy", json=BUYER)
    assert r.status_code == 200, r.text
    out = r.json()
    assert out["charged"] == config.PRICE_INDIVIDUAL
    assert out["currency"] == config.CURRENCY
    assert out["invoice"] == "created-1"

    (req,) = fake_square.created
    assert req["merchant_invoice_number"] == f"PurchaseRequest {out['id']}"
    assert req["requested_money"] == {
        "amount": config.PRICE_INDIVIDUAL,
        "currency_code": config.CURRENCY,
    }
    assert req["payer"]["display_name"] == "Ada Lovelace"
    assert req["payer"]["email"] == "ada@example.com"
    assert req["is_draft"] is False
    assert set(req["due_on"]) == {"day_of_month", "month_of_year", "year"}


async def test_bought_request_is_matched_by_reconciler(
        client, fake_square, database, connect_square, mailer, store):
    out = (await client.post("/api/buy", json=BUYER)).json()
    fake_square.invoices[0]["state"] = "PAID"

    SessionAsync, gated = database
    report = await Reconciler(
        sessionmaker=SessionAsync, gated=gated,
        connect_square=connect_square, mailer=mailer,
    ).run_cycle()

    assert report.statuses == {out["id"]: ISSUED}
    assert await store.count_tickets_for(out["id"]) == 1


async def test_buy_group(client, fake_square, store):
    payload = dict(BUYER, type="Group", group_members=[
        {"first_name": "Grace", "last_name": "Hopper",
         "email": "grace@example.com", "phone_number": "1"},
        {"first_name": "Alan", "last_name": "Turing",
         "email": "alan@example.com", "phone_number": "2"},
        {"first_name": "Edsger", "last_name": "Dijkstra",
         "email": "edsger@example.com", "phone_number": "3"},
    ])
    r = await client.post("/api/buy", json=payload)
    assert r.status_code == 200, r.text
    assert r.json()["charged"] == config.PRICE_GROUP
    pr = await store.get_purchase_request(r.json()["id"])
    assert pr.type == "Group"
    assert [h["first_name"] for h in pr.holders()] == \
        ["Ada", "Grace", "Alan", "Edsger"]


async def test_buy_with_promo_code(client, store):
    await store.add_promo_code(PromoCode(id="HALF", percent=0.5, amount=0,
                                         count=1, created_at=NOW))
    r = await client.post("/api/buy", json=dict(BUYER, promo_code="HALF"))
    assert r.status_code == 200, r.text
    assert r.json()["charged"] == config.PRICE_INDIVIDUAL // 2
    assert await store.get_promo_code("HALF") is None

    r = await client.post("/api/buy", json=dict(BUYER, promo_code="HALF"))
    assert r.status_code == 400
    assert "Invalid promo code" in r.json()["detail"]


@pytest.mark.parametrize("change", [
    {"first_name": ""},
    {"email": "not-an-email"},
    {"after_party_count": "lots"},
    {"after_party_count": -1},
    {"type": "Group", "group_members": [{}, {}, {}, {}]},
])
async def test_buy_rejects_bad_requests(client, fake_square, change):
    r = await client.post("/api/buy", json=dict(BUYER, **change))
    assert r.status_code == 400
    assert fake_square.created == []


async def test_buy_refuses_when_sold_out(client, store, monkeypatch):
    monkeypatch.setattr(config, "MAX_TICKETS", 4)
    await store.add_ticket(Ticket(id="already-sold-one", created_at=NOW))
    r = await client.post("/api/buy", json=dict(BUYER, type="Group"))
    assert r.status_code == 400
    assert "there are 3 tickets available" in r.json()["detail"]
    r = await client.post("/api/buy", json=BUYER)
    assert r.status_code == 200


async def test_buy_reports_square_outage(client, store):
    app.dependency_overrides[square_connector] = lambda: broken_square
    r = await client.post("/api/buy", json=BUYER)
    assert r.status_code == 502
    # the purchase request stays and will show up as NO_INVOICE
    assert len(await store.list_purchase_requests()) == 1


async def test_price_details(client, store):
    await store.add_promo_code(PromoCode(id="FIVE", percent=0.0, amount=500,
                                         count=3, created_at=NOW))
    r = await client.get("/api/details", params={"type": "Group",
                                                 "code": "FIVE"})
    assert r.json() == {"promo_code": None,
                        "price": f"{config.PRICE_GROUP / 100:.2f}"}

    r = await client.get("/api/details", params={"type": "Individual",
                                                 "code": "FIVE"})
    body = r.json()
    assert body["price"] == f"{(config.PRICE_INDIVIDUAL - 500) / 100:.2f}"
    assert body["promo_code"]["id"] == "FIVE"


async def test_ticket_details(client, store):
    await store.add_ticket(Ticket(id="happily-bold-owl", first_name="Ada",
                                  last_name="Lovelace", email="a@b.co",
                                  phone_number="1", created_at=NOW))
    r = await client.get("/api/ticket/happily-bold-owl")
    assert r.json() == {"id": "happily-bold-owl", "first_name": "Ada",
                        "last_name": "Lovelace", "phone_number": "1",
                        "email": "a@b.co"}
    r = await client.get("/api/ticket/nope")
    assert r.status_code == 404


@pytest.mark.parametrize("path", [
    "/api/purchaseRequests", "/api/promoCodes", "/api/tickets",
    "/api/square", "/api/stats",
])
async def test_admin_endpoints_need_login(client, path):
    r = await client.get(path)
    assert r.status_code == 401


async def test_admin_login_rejects_bad_password(client):
    r = await client.post("/api/admin/login",
                          json={"username": "admin", "password": "nope"})
    assert r.status_code == 401


async def test_purchase_request_listing_has_status(admin, fake_square,
                                                   store):
    await add_purchase_request(store, 1)
    await add_purchase_request(store, 2)
    fake_square.invoices = [
        invoice_json("PurchaseRequest 1", state="PAID",
                     delivery_status="EMAILED"),
        invoice_json("Random Thing"),
    ]
    r = await admin.get("/api/purchaseRequests")
    assert r.status_code == 200
    by_id = {d["id"]: d for d in r.json()}
    assert by_id[1]["status"] == "PAID - EMAILED"
    assert by_id[1]["invoice"]["token"] == "inv-PurchaseRequest-1"
    assert by_id[2]["status"] == "NO_INVOICE"
    assert by_id[2]["invoice"] is None


async def test_purchase_request_listing_survives_outage(admin, store):
    await add_purchase_request(store, 1)
    app.dependency_overrides[square_connector] = lambda: broken_square
    r = await admin.get("/api/purchaseRequests")
    assert r.status_code == 200
    assert [d["status"] for d in r.json()] == ["NO_INVOICE"]


async def test_square_passthrough(admin, fake_square):
    fake_square.invoices = [invoice_json("Random Thing")]
    r = await admin.get("/api/square")
    assert [i["merchant_invoice_number"] for i in r.json()] == \
        ["Random Thing"]
    app.dependency_overrides[square_connector] = lambda: broken_square
    assert (await admin.get("/api/square")).status_code == 502


async def test_promo_code_admin(admin):
    r = await admin.post("/api/promoCodes", json={
        "id": "EARLY", "percent": 0.2, "amount": 0, "count": 10})
    assert r.json() == [{"id": "EARLY", "percent": 0.2, "amount": 0,
                         "count": 10}]
    r = await admin.post("/api/promoCodes", json={"id": "EARLY"})
    assert r.status_code == 409
    r = await admin.patch("/api/promoCodes", json={"id": "EARLY",
                                                   "count": 3})
    assert r.json()[0]["count"] == 3
    r = await admin.patch("/api/promoCodes", json={"id": "EARLY",
                                                   "count": -1})
    assert r.status_code == 400
    r = await admin.patch("/api/promoCodes", json={"id": "NOPE",
                                                   "count": 1})
    assert r.status_code == 404


async def test_ticket_admin(admin):
    r = await admin.post("/api/tickets", json={"first_name": "Comp",
                                               "email": "comp@example.com"})
    (ticket,) = r.json()
    assert ticket["purchase_request_id"] is None
    assert len(ticket["id"].split("-")) == 3

    r = await admin.request("DELETE", "/api/tickets",
                            json=[{"id": ticket["id"]}])
    assert r.json() == []


async def test_stats(admin, store):
    await add_purchase_request(store, 1, after_party_count=2)
    await add_purchase_request(store, 2, type="Group")
    await store.add_ticket(Ticket(id="one-two-three", created_at=NOW))
    r = await admin.get("/api/stats")
    assert r.json() == {"tickets": 1, "purchase_requests": 2,
                        "people_count": 5, "after_party_count": 2}
