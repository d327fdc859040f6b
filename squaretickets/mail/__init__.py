# mail/__init__.py
from typing import Optional
import httpx

from .. import config
from .adapter import MailAdapter
from ._log import LogMailer
from ._mailgun import MailgunMailer

BACKEND = config.MAIL_BACKEND  # 'log' | 'mailgun'


# Factory keeps server.py simple and constructor-agnostic:
def new_mailer(*, http: Optional[httpx.AsyncClient] = None) -> MailAdapter:
    if BACKEND == "mailgun":
        if http is None:
            raise RuntimeError("MailgunMailer requires http=httpx.AsyncClient")
        if not config.MAILGUN_API_KEY:
            raise RuntimeError("MailgunMailer requires MAILGUN_API_KEY")
        return MailgunMailer(
            http,
            domain=config.MAILGUN_DOMAIN,
            api_key=config.MAILGUN_API_KEY,
            sender=config.MAIL_SENDER,
        )
    return LogMailer()


__all__ = ["MailAdapter", "LogMailer", "MailgunMailer", "new_mailer",
           "BACKEND"]
