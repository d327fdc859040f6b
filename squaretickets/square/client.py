"""Browser-style session against Square's dashboard services.

Square exposes no API for invoices, so the client logs in the way the
dashboard does: fetch the login page to get a ``_js_csrf`` cookie, post the
credentials, then read the merchant and unit tokens that scope every later
call. A session lives for exactly one reconciliation cycle (or one HTTP
request); there is no refresh, callers just log in again.
"""
from __future__ import annotations
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import httpx

from ..errors import AuthError, BootstrapError, RemoteError, TransportError
from .models import Invoice

log = logging.getLogger(__name__)

ORIGIN_URL = "https://squareup.com"
LOGIN_URL = "https://squareup.com/login"
LOGIN_POST_URL = "https://api.squareup.com/mp/login"
NAVIGATION_URL = "https://squareup.com/dashboard/navigation"
SUBUNITS_URL = "https://squareup.com/api/v1/multiunit/subunits"
INVOICE_SERVICE = (
    "https://squareup.com/services/squareup.invoice.service.InvoiceService"
)
INVOICE_LIST_URL = f"{INVOICE_SERVICE}/List"
INVOICE_CREATE_URL = f"{INVOICE_SERVICE}/Create"
INVOICE_CANCEL_URL = f"{INVOICE_SERVICE}/Cancel"

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/47.0.2526.111 Safari/537.36"
)
ACCEPT = "application/json, text/javascript, */*; q=0.01"
CSRF_COOKIE = "_js_csrf"

WRITE_METHODS = ("POST", "PUT", "PATCH", "DELETE")


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(email={self.email!r}, password='***')"


@dataclass(frozen=True)
class Identity:
    merchant_token: str
    unit_token: Optional[str] = None
    merchant: str = ""


class SquareSession:
    """Cookie jar for one logged-in dashboard session.

    Not safe to share between concurrent callers; every caller opens its own.
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self.http = http
        self.identity: Optional[Identity] = None

    def csrf_token(self) -> str:
        # the jar may hold the cookie for several domains; any value will do
        for cookie in self.http.cookies.jar:
            if cookie.name == CSRF_COOKIE:
                return cookie.value or ""
        return ""

    async def aclose(self) -> None:
        await self.http.aclose()


def _headers(session: SquareSession, identity: Optional[Identity],
             write: bool) -> Dict[str, str]:
    h = {
        "X-CSRF-Token": session.csrf_token(),
        "Origin": ORIGIN_URL,
        "Referer": LOGIN_URL,
        "User-Agent": USER_AGENT,
        "Accept": ACCEPT,
    }
    if identity is not None and identity.merchant_token:
        h["X-Merchant-Token"] = identity.merchant_token
    if write:
        h["Content-Type"] = "application/json"
    return h


async def signed_request(
    session: SquareSession,
    identity: Optional[Identity],
    url: str,
    payload: Any = None,
    method: str = "POST",
) -> Tuple[Any, int]:
    """Send one request with the CSRF and merchant headers Square expects.

    Returns the decoded JSON body (``None`` if the body is not JSON) and the
    HTTP status. A body carrying ``"success": false`` raises RemoteError even
    when the status is 200.
    """
    method = method.upper()
    write = method in WRITE_METHODS
    content = json.dumps(payload).encode() if write else None
    log.debug("%s %s", method, url)
    try:
        resp = await session.http.request(
            method, url, content=content,
            headers=_headers(session, identity, write),
        )
    except httpx.HTTPError as e:
        raise TransportError(f"{method} {url}: {e}") from e

    try:
        body = resp.json()
    except ValueError:
        body = None

    if isinstance(body, dict) and body.get("success") is False:
        title = body.get("error_title") or ""
        message = body.get("error_message") or resp.text
        raise RemoteError(
            f"{url} failed: {title} {message}".strip(),
            status=resp.status_code, title=title,
        )
    return body, resp.status_code


def new_session(*, timeout: float = 10.0,
                transport: Optional[httpx.AsyncBaseTransport] = None
                ) -> SquareSession:
    http = httpx.AsyncClient(
        timeout=timeout,
        transport=transport,
        follow_redirects=True,
    )
    return SquareSession(http)


async def authenticate(
    credentials: Credentials, *, timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SquareSession:
    session = new_session(timeout=timeout, transport=transport)
    try:
        await login(session, credentials)
    except BaseException:
        await session.aclose()
        raise
    return session


async def login(session: SquareSession, credentials: Credentials) -> None:
    # the login page seeds the _js_csrf cookie
    try:
        await session.http.get(LOGIN_URL, headers={"User-Agent": USER_AGENT})
    except httpx.HTTPError as e:
        raise TransportError(f"GET {LOGIN_URL}: {e}") from e

    try:
        body, code = await signed_request(
            session, None, LOGIN_POST_URL,
            {"email": credentials.email, "password": credentials.password},
        )
    except RemoteError as e:
        raise AuthError(f"square login rejected: {e}") from e
    if code != 200:
        raise AuthError(f"error logging into square {code}, {body}")
    log.debug("logged into square as %s", credentials.email)


async def bootstrap(session: SquareSession) -> Identity:
    """Fetch merchant and default unit tokens and remember them."""
    try:
        nav, code = await signed_request(
            session, None, NAVIGATION_URL, method="GET"
        )
        if code != 200 or not isinstance(nav, dict):
            raise BootstrapError(f"error getting navigation {code}, {nav}")
        merchant_token = nav.get("token") or ""
        if not merchant_token:
            raise BootstrapError("navigation returned no merchant token")
        partial = Identity(merchant_token=merchant_token,
                           merchant=nav.get("merchant") or "")

        subunits, code = await signed_request(
            session, partial, SUBUNITS_URL, method="GET"
        )
        if code != 200 or not isinstance(subunits, dict):
            raise BootstrapError(f"error getting subunits {code}, {subunits}")
    except RemoteError as e:
        raise BootstrapError(str(e)) from e

    entities = subunits.get("entities") or []
    unit_token = entities[0].get("token") if entities else None
    identity = Identity(
        merchant_token=merchant_token,
        unit_token=unit_token,
        merchant=partial.merchant,
    )
    session.identity = identity
    return identity


@asynccontextmanager
async def connect(
    credentials: Credentials, *, timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[SquareSession]:
    """Log in and bootstrap a fresh session, closed on exit."""
    session = await authenticate(
        credentials, timeout=timeout, transport=transport
    )
    try:
        await bootstrap(session)
        yield session
    finally:
        await session.aclose()


async def create_invoice(
    session: SquareSession, identity: Identity, request: Dict[str, Any]
) -> Optional[Invoice]:
    req = dict(request)
    req["unit_token"] = identity.unit_token or ""
    body, code = await signed_request(
        session, identity, INVOICE_CREATE_URL, req
    )
    if code != 200:
        raise RemoteError(
            f"error creating square invoice {code}, {body}", status=code
        )
    inv = (body or {}).get("invoice")
    return Invoice.from_json(inv) if inv else None


async def cancel_invoice(
    session: SquareSession, identity: Identity, token: str,
    send_email_to_recipients: bool = False,
) -> Optional[Invoice]:
    body, code = await signed_request(
        session, identity, INVOICE_CANCEL_URL,
        {"token": token, "send_email_to_recipients": send_email_to_recipients},
    )
    if code != 200:
        raise RemoteError(
            f"error cancelling square invoice {code}, {body}", status=code
        )
    inv = (body or {}).get("invoice")
    return Invoice.from_json(inv) if inv else None
