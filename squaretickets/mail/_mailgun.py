import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..errors import DeliveryError
from .adapter import MailAdapter

log = logging.getLogger(__name__)

MAILGUN_API = "https://api.mailgun.net/v3"

# members per upload; mailgun refuses larger bulk requests
MEMBER_BATCH = 1000
LIST_PAGE = 100


# ----------------------------
# Mailgun implementation
# ----------------------------
class MailgunMailer(MailAdapter):
    def __init__(self, http: httpx.AsyncClient, *, domain: str,
                 api_key: str, sender: str,
                 base_url: str = MAILGUN_API) -> None:
        self.http = http
        self.domain = domain
        self.api_key = api_key
        self.sender = sender
        self.base_url = base_url.rstrip("/")

    async def _call(self, method: str, url: str, *, ok=(200,),
                    **kw) -> httpx.Response:
        if not url.startswith("http"):
            url = f"{self.base_url}/{url}"
        try:
            r = await self.http.request(
                method, url, auth=("api", self.api_key), **kw
            )
        except httpx.HTTPError as e:
            raise DeliveryError(f"mailgun unreachable: {e}") from e
        if r.status_code not in ok:
            raise DeliveryError(
                f"mailgun {method} {url}: {r.status_code} {r.text}"
            )
        return r

    async def send(self, to: str, subject: str, html: str, text: str) -> str:
        if not to:
            raise DeliveryError("no recipient address")
        try:
            r = await self._call("POST", f"{self.domain}/messages", data={
                "from": self.sender,
                "to": to,
                "subject": subject,
                "text": text,
                "html": html,
            })
        except DeliveryError as e:
            raise DeliveryError(f"mailgun rejected message to {to}: {e}") from e
        try:
            msg_id = r.json().get("id", "")
        except ValueError:
            msg_id = ""
        log.debug("mailgun accepted %s for %s", msg_id, to)
        return msg_id

    # ---- mailing lists
    async def list_addresses(self) -> List[str]:
        """Addresses of every mailing list on the account."""
        addresses: List[str] = []
        url: Optional[str] = f"lists/pages?limit={LIST_PAGE}"
        while url:
            body = (await self._call("GET", url)).json()
            items = body.get("items") or []
            if not items:
                break
            addresses.extend(i["address"] for i in items)
            url = (body.get("paging") or {}).get("next")
        return addresses

    async def has_list(self, address: str) -> bool:
        r = await self._call("GET", f"lists/{address}", ok=(200, 404))
        return r.status_code == 200

    async def delete_list(self, address: str) -> None:
        await self._call("DELETE", f"lists/{address}")

    async def create_list(self, address: str, *, description: str = ""
                          ) -> None:
        await self._call("POST", "lists", data={
            "address": address,
            "name": f"List: {address}",
            "description": description,
            "access_level": "readonly",
        })

    async def add_members(self, address: str,
                          members: Sequence[Dict[str, Any]]) -> int:
        """Upsert members in batches. Returns the number of requests made."""
        calls = 0
        for i in range(0, len(members), MEMBER_BATCH):
            batch = list(members[i:i + MEMBER_BATCH])
            await self._call("POST", f"lists/{address}/members.json", data={
                "members": json.dumps(batch),
                "upsert": "yes",
            })
            calls += 1
        return calls
