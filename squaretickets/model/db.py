from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    ForeignKey,
)
from sqlalchemy.ext.asyncio import AsyncEngine


Base = declarative_base()

INDIVIDUAL = "Individual"
GROUP = "Group"

GROUP_MEMBER_SLOTS = (2, 3, 4)
CONTACT_FIELDS = ("first_name", "last_name", "phone_number", "email")


# ----------------------------
# ORM models
# ----------------------------
class PurchaseRequest(Base):
    __tablename__ = "purchase_requests"
    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    phone_number = Column(String, nullable=False)
    email = Column(String, nullable=False)

    # Individual | Group
    type = Column(String, nullable=False, default=INDIVIDUAL)

    group_member2_first_name = Column(String, nullable=True)
    group_member2_last_name = Column(String, nullable=True)
    group_member2_phone_number = Column(String, nullable=True)
    group_member2_email = Column(String, nullable=True)
    group_member3_first_name = Column(String, nullable=True)
    group_member3_last_name = Column(String, nullable=True)
    group_member3_phone_number = Column(String, nullable=True)
    group_member3_email = Column(String, nullable=True)
    group_member4_first_name = Column(String, nullable=True)
    group_member4_last_name = Column(String, nullable=True)
    group_member4_phone_number = Column(String, nullable=True)
    group_member4_email = Column(String, nullable=True)

    after_party_count = Column(Integer, nullable=False, default=0)
    promo_code = Column(String, nullable=True)
    charged = Column(Integer, nullable=False)  # cents
    currency = Column(String, nullable=False)

    created_at = Column(Float, nullable=False)
    # set once the stale invoice has been canceled at Square
    canceled_at = Column(Float, nullable=True)

    def holders(self) -> list[dict]:
        """Contact records that get a ticket, purchaser first."""
        people = [{f: getattr(self, f) for f in CONTACT_FIELDS}]
        if self.type == GROUP:
            for n in GROUP_MEMBER_SLOTS:
                people.append({
                    f: getattr(self, f"group_member{n}_{f}") or ""
                    for f in CONTACT_FIELDS
                })
        return people

    def to_dict(self) -> dict:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class PromoCode(Base):
    __tablename__ = "promo_codes"
    id = Column(String, primary_key=True)  # the code itself
    percent = Column(Float, nullable=False, default=0.0)  # 0.0 .. 1.0
    amount = Column(Integer, nullable=False, default=0)  # cents
    count = Column(Integer, nullable=False, default=0)  # redemptions left
    created_at = Column(Float, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "percent": self.percent,
            "amount": self.amount,
            "count": self.count,
        }


class Ticket(Base):
    __tablename__ = "tickets"
    id = Column(String, primary_key=True)
    # NULL until the whole set is attached to its purchase request
    purchase_request_id = Column(
        Integer, ForeignKey("purchase_requests.id"), nullable=True, index=True
    )
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    phone_number = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, default="")
    created_at = Column(Float, nullable=False)

    def details(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone_number": self.phone_number,
            "email": self.email,
        }

    def to_dict(self) -> dict:
        d = self.details()
        d["purchase_request_id"] = self.purchase_request_id
        d["created_at"] = self.created_at
        return d


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
