"""Shared fixtures: a temporary database and an in-process fake of Square."""
import json
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import pytest

from squaretickets.infra.sql import make_async_engine
from squaretickets.mail import LogMailer
from squaretickets.model.db import PurchaseRequest, create_schema
from squaretickets.model.store import TicketStore
from squaretickets.square import Credentials, connect

NOW = 1_700_000_000.0
HOUR = 3600.0

CSRF = "csrf-cookie-value"
MERCHANT_TOKEN = "MERCHANT-TOKEN"
UNIT_TOKEN = "UNIT-TOKEN"
EMAIL = "treasurer@example.com"
PASSWORD = "hunter2"


def invoice_json(number: str, state: str = "UNPAID", token: Optional[str] = None,
                 created_at: float = NOW, delivery_status: str = "SENT") -> dict:
    return {
        "token": token or f"inv-{number.replace(' ', '-')}",
        "merchant_invoice_number": number,
        "state": state,
        "delivery_status": delivery_status,
        "created_at": {"instant_usec": int(created_at * 1_000_000),
                       "timezone_offset_min": 0, "tz_name": ["UTC"]},
        "payer_name": "Ada Lovelace",
        "payer_email": "ada@example.com",
    }


class FakeSquare:
    """Just enough of Square's dashboard endpoints for the session client."""

    def __init__(self) -> None:
        self.invoices: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.created: list[dict] = []
        self.canceled: list[str] = []
        self.login_status = 200
        self.reject_login = False
        self.navigation_status = 200
        self.list_status = 200
        self.cancel_fails = False
        self.unreachable = False
        self.subunits = [{"email": EMAIL, "nickname": "Main",
                          "token": UNIT_TOKEN, "unit_active": True}]
        self.transport = httpx.MockTransport(self.handler)

    def calls(self, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path
        body = json.loads(request.content) if request.content else None

        if request.method == "GET" and path == "/login":
            return httpx.Response(200, text="<html>login</html>", headers={
                "set-cookie": f"_js_csrf={CSRF}; Domain=.squareup.com; Path=/",
            })
        if path == "/mp/login":
            if self.reject_login:
                return httpx.Response(200, json={
                    "success": False, "error_title": "Login failed",
                    "error_message": "bad password"})
            if body != {"email": EMAIL, "password": PASSWORD}:
                return httpx.Response(401, json={"error": "unauthorized"})
            return httpx.Response(self.login_status, json={})
        if path == "/dashboard/navigation":
            return httpx.Response(
                self.navigation_status,
                json={"merchant": "CSSS", "token": MERCHANT_TOKEN},
            )
        if path == "/api/v1/multiunit/subunits":
            return httpx.Response(200, json={"entities": self.subunits})
        if path.endswith("InvoiceService/List"):
            return httpx.Response(self.list_status, json={
                "next_cursor": "", "invoice": list(self.invoices)})
        if path.endswith("InvoiceService/Create"):
            inv = invoice_json(body["merchant_invoice_number"],
                               token=f"created-{len(self.created) + 1}")
            self.created.append(body)
            self.invoices.append(inv)
            return httpx.Response(200, json={"success": True, "invoice": inv})
        if path.endswith("InvoiceService/Cancel"):
            if self.cancel_fails:
                return httpx.Response(200, json={
                    "success": False, "error_title": "Cannot cancel",
                    "error_message": "invoice is locked"})
            self.canceled.append(body["token"])
            for inv in self.invoices:
                if inv["token"] == body["token"]:
                    inv["state"] = "CANCELED"
                    return httpx.Response(
                        200, json={"success": True, "invoice": inv})
            return httpx.Response(200, json={"success": True})
        return httpx.Response(404, text="not found")


@pytest.fixture
def fake_square() -> FakeSquare:
    return FakeSquare()


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(EMAIL, PASSWORD)


@pytest.fixture
def connect_square(fake_square, credentials):
    def _connect():
        return connect(credentials, transport=fake_square.transport)
    return _connect


@pytest.fixture
async def database(tmp_path):
    engine, SessionAsync, gated = make_async_engine(
        f"sqlite:///{tmp_path}/tickets.db"
    )
    await create_schema(engine)
    yield SessionAsync, gated
    await engine.dispose()


@pytest.fixture
async def store(database):
    SessionAsync, gated = database
    async with SessionAsync() as session:
        yield TicketStore(db=session, gated=gated)


@pytest.fixture
def mailer() -> LogMailer:
    return LogMailer()


class FailingMailer(LogMailer):
    async def send(self, to, subject, html, text):
        from squaretickets.errors import DeliveryError
        raise DeliveryError(f"mailbox for {to} is full")


@pytest.fixture
def failing_mailer() -> FailingMailer:
    return FailingMailer()


async def add_purchase_request(store: TicketStore, pr_id: int,
                               type: str = "Individual",
                               created_at: float = NOW,
                               **kw) -> PurchaseRequest:
    fields = dict(
        id=pr_id, first_name="Ada", last_name="Lovelace",
        phone_number="604-555-0100", email="ada@example.com", type=type,
        charged=2500, currency="CAD", created_at=created_at,
        after_party_count=0,
    )
    if type == "Group":
        for n, name in zip((2, 3, 4), ("Grace", "Alan", "Edsger")):
            fields[f"group_member{n}_first_name"] = name
            fields[f"group_member{n}_last_name"] = "Member"
            fields[f"group_member{n}_phone_number"] = f"604-555-010{n}"
            fields[f"group_member{n}_email"] = f"{name.lower()}@example.com"
    fields.update(kw)
    return await store.add_purchase_request(PurchaseRequest(**fields))


@asynccontextmanager
async def broken_square():
    from squaretickets.errors import TransportError
    raise TransportError("square is down")
    yield  # pragma: no cover
