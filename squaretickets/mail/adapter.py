from abc import ABC, abstractmethod


# ----------------------------
# Mail Adapter Interface
# ----------------------------
class MailAdapter(ABC):
    # raises DeliveryError when the provider does not accept the message
    @abstractmethod
    async def send(self, to: str, subject: str, html: str, text: str) -> str:
        ...
