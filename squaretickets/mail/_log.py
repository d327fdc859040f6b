import logging
import uuid
from collections import deque

from .adapter import MailAdapter

log = logging.getLogger(__name__)


# ----------------------------
# Development mailer: nothing leaves the process
# ----------------------------
class LogMailer(MailAdapter):
    def __init__(self) -> None:
        self.sent: deque[dict] = deque(maxlen=100)

    async def send(self, to: str, subject: str, html: str, text: str) -> str:
        msg_id = f"log_{uuid.uuid4().hex}"
        self.sent.append({
            "id": msg_id, "to": to, "subject": subject,
            "html": html, "text": text,
        })
        log.info("To: %s\nSubj: %s\nText:\n%s", to, subject, text)
        return msg_id
