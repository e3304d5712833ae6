from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum as PyEnum
from typing import Optional


class OrderStatus(PyEnum):
    PENDING = "pending"
    PAID = "paid"
    IN_TRANSIT = "intransit"  # wire literal has no underscore
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, raw) -> "OrderStatus":
        """Normalise a status coming off the wire.

        Accepts the canonical literal in any case plus the spellings other
        endpoints have been seen to send for "in transit".
        """
        if isinstance(raw, cls):
            return raw
        token = str(raw or "").strip().lower()
        token = _STATUS_ALIASES.get(token, token)
        try:
            return cls(token)
        except ValueError:
            raise ValueError(f"unknown order status: {raw!r}") from None

    @property
    def label(self) -> str:
        return "In Transit" if self is OrderStatus.IN_TRANSIT else self.value.capitalize()


_STATUS_ALIASES = {
    "in_transit": "intransit",
    "in-transit": "intransit",
    "in transit": "intransit",
}

# Progress rank by fixed lookup; disputed/cancelled are branches, not progress.
PROGRESSION = {
    OrderStatus.PENDING: 0,
    OrderStatus.PAID: 1,
    OrderStatus.IN_TRANSIT: 2,
    OrderStatus.DELIVERED: 3,
    OrderStatus.COMPLETED: 4,
}


def progress_rank(status: OrderStatus) -> Optional[int]:
    return PROGRESSION.get(status)


class AccountType(PyEnum):
    MOMO = "momo"
    BANK = "bank"


BUSINESS_CATEGORIES = [
    "Fashion & Clothing",
    "Electronics & Gadgets",
    "Food & Beverages",
    "Beauty & Cosmetics",
    "Home & Garden",
    "Sports & Fitness",
    "Books & Media",
    "Handmade & Crafts",
    "Automotive",
    "Services",
    "Other",
]

SOCIAL_NETWORKS = ("instagram", "facebook", "twitter", "whatsapp")


# ===================== Parsing helpers =====================
def _int_or_none(x) -> Optional[int]:
    if x is None or x == "":
        return None
    try:
        return int(x)
    except (TypeError, ValueError):
        return None


def _amount(x) -> Decimal:
    try:
        value = Decimal(str(x if x is not None else 0))
    except InvalidOperation:
        raise ValueError(f"invalid amount: {x!r}") from None
    if value < 0:
        raise ValueError(f"negative amount: {x!r}")
    return value


def _ts(x) -> Optional[datetime]:
    if not x:
        return None
    try:
        return datetime.fromisoformat(str(x).replace("Z", "+00:00"))
    except ValueError:
        return None


# ===================== Entities =====================
@dataclass
class User:
    id: int
    name: str = ""
    email: str = ""
    contact: str = ""
    rating: float = 0.0
    total_ratings: int = 0
    is_business: bool = False
    business_category: Optional[str] = None
    social_media_links: dict = field(default_factory=dict)
    location: Optional[str] = None
    profile_image: Optional[str] = None
    date_of_birth: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, d: dict) -> "User":
        links = d.get("social_media_links") or {}
        return cls(
            id=int(d["id"]),
            name=d.get("name") or "",
            email=d.get("email") or "",
            contact=d.get("contact") or "",
            rating=float(d.get("rating") or 0),
            total_ratings=int(d.get("total_ratings") or 0),
            is_business=bool(d.get("is_business")),
            business_category=d.get("business_category"),
            social_media_links={k: v for k, v in links.items() if k in SOCIAL_NETWORKS and v},
            location=d.get("location"),
            profile_image=d.get("profile_image"),
            date_of_birth=d.get("date_of_birth"),
            created_at=_ts(d.get("created_at")),
            updated_at=_ts(d.get("updated_at")),
        )

    def with_rating(self, submitted: int) -> "User":
        """Copy of this user with one more rating folded into the average."""
        count = self.total_ratings
        new_rating = (self.rating * count + submitted) / (count + 1)
        return replace(self, rating=new_rating, total_ratings=count + 1)


@dataclass
class Order:
    id: Optional[int]
    order_id: str
    product_title: str
    description: str
    amount: Decimal
    sender_id: Optional[int]
    status: OrderStatus
    payment_code: str = ""
    receiver_id: Optional[int] = None
    sender: Optional[User] = None
    receiver: Optional[User] = None
    payment_link: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, d: dict) -> "Order":
        sender = d.get("sender")
        receiver = d.get("receiver")
        return cls(
            id=_int_or_none(d.get("id")),
            order_id=str(d.get("order_id") or d.get("id") or ""),
            product_title=d.get("product_title") or "",
            description=d.get("description") or "",
            amount=_amount(d.get("amount")),
            sender_id=_int_or_none(d.get("sender_id")),
            receiver_id=_int_or_none(d.get("receiver_id")),
            sender=User.from_dict(sender) if isinstance(sender, dict) else None,
            receiver=User.from_dict(receiver) if isinstance(receiver, dict) else None,
            status=OrderStatus.parse(d.get("status")),
            payment_code=d.get("payment_code") or "",
            payment_link=d.get("payment_link"),
            created_at=_ts(d.get("created_at")),
            updated_at=_ts(d.get("updated_at")),
        )

    @property
    def both_parties_joined(self) -> bool:
        return self.sender_id is not None and self.receiver_id is not None


@dataclass
class Account:
    id: Optional[int]
    type: AccountType
    name: str
    number: str
    service_provider: str = ""
    user_id: Optional[int] = None

    @classmethod
    def from_dict(cls, d: dict) -> "Account":
        return cls(
            id=_int_or_none(d.get("id")),
            type=AccountType(str(d.get("type") or "").lower()),
            name=d.get("name") or "",
            number=str(d.get("number") or ""),
            service_provider=d.get("service_provider") or "",
            user_id=_int_or_none(d.get("user_id")),
        )


@dataclass
class AuthTokens:
    access_token: str
    token_type: str = "bearer"
    refresh_token: Optional[str] = None

    @classmethod
    def from_dict(cls, d: dict) -> "AuthTokens":
        token = (d or {}).get("access_token")
        if not token:
            raise ValueError("auth response carries no access_token")
        return cls(
            access_token=token,
            token_type=d.get("token_type") or "bearer",
            refresh_token=d.get("refresh_token"),
        )

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "refresh_token": self.refresh_token,
        }
