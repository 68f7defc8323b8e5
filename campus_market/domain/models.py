import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from .documents import Document
from .errors import InvalidAmount, InvalidDocument

E = TypeVar("E", bound=Enum)

SYSTEM_SENDER = "system"
ANONYMOUS = "Anonymous"


class ListingStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SOLD = "sold"
    DELETED = "deleted"


class BidStatus(str, Enum):
    ACTIVE = "active"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class PricingMode(str, Enum):
    FIXED = "fixed"
    NEGOTIABLE = "negotiable"
    BIDDING = "bidding"


class Visibility(str, Enum):
    UNIVERSITY = "university"
    ALL = "all"


class Category(str, Enum):
    TEXTBOOKS = "Textbooks"
    ELECTRONICS = "Electronics"
    FURNITURE = "Furniture"
    CLOTHING = "Clothing"
    SPORTS_EQUIPMENT = "Sports Equipment"
    MUSICAL_INSTRUMENTS = "Musical Instruments"
    OTHER = "Other"


class Condition(str, Enum):
    NEW = "new"
    LIKE_NEW = "like-new"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class ServiceStatus(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class Role(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"


class MessageKind(str, Enum):
    TEXT = "text"
    SYSTEM = "system"
    MEETUP = "meetup"


def parse_enum(enum_cls: Type[E], raw: Any, label: str, default: Optional[E] = None) -> E:
    if isinstance(raw, enum_cls):
        return raw
    if raw is None or raw == "":
        if default is not None:
            return default
        raise InvalidDocument(f"Missing {label}")
    try:
        return enum_cls(raw)
    except ValueError:
        raise InvalidDocument(f"Unknown {label}: {raw!r}") from None


def parse_category(raw: Any) -> Category:
    try:
        return parse_enum(Category, raw, "category")
    except InvalidDocument:
        return Category.OTHER


def parse_amount(raw: Any, label: str = "Amount") -> float:
    if isinstance(raw, bool):
        raise InvalidAmount(f"{label} must be a number")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise InvalidAmount(f"{label} must be a number") from None
    if not math.isfinite(value) or value <= 0:
        raise InvalidAmount(f"{label} must be greater than zero")
    return value


def _optional_str(raw: Any) -> Optional[str]:
    return str(raw) if raw not in (None, "") else None


def _number(data: Dict[str, Any], key: str, doc_id: str, default: Optional[float] = 0.0) -> Optional[float]:
    raw = data.get(key)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise InvalidDocument(f"Document {doc_id} has a non-numeric {key}")
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise InvalidDocument(f"Document {doc_id} has a non-numeric {key}: {raw!r}") from None


@dataclass(frozen=True)
class ListingDraft:
    title: str
    description: str
    category: Category
    condition: Condition
    pricing_mode: PricingMode
    price: Optional[float] = None
    visibility: Visibility = Visibility.UNIVERSITY
    university: Optional[str] = None
    images: List[str] = field(default_factory=list)

    def validated(self) -> "ListingDraft":
        title = (self.title or "").strip()
        if not title:
            raise InvalidDocument("Title is required")
        mode = parse_enum(PricingMode, self.pricing_mode, "pricing mode")
        return ListingDraft(
            title=title,
            description=(self.description or "").strip(),
            category=parse_category(self.category),
            condition=parse_enum(Condition, self.condition, "condition"),
            pricing_mode=mode,
            price=normalize_price(mode, self.price),
            visibility=parse_enum(Visibility, self.visibility, "visibility"),
            university=self.university,
            images=list(self.images),
        )


def normalize_price(mode: PricingMode, price: Any) -> Optional[float]:
    """A price is carried only by fixed-price listings."""
    if PricingMode(mode) is PricingMode.FIXED:
        return parse_amount(price, "Price")
    return None


@dataclass(frozen=True)
class Listing:
    id: str
    owner_id: str
    title: str
    description: str
    category: Category
    condition: Condition
    pricing_mode: PricingMode
    status: ListingStatus
    price: Optional[float] = None
    visibility: Visibility = Visibility.UNIVERSITY
    university: Optional[str] = None
    seller_name: Optional[str] = None
    images: List[str] = field(default_factory=list)
    views: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    sold_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    accepted_bid_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    seller_rating: float = 0.0
    total_ratings: int = 0

    @property
    def accepts_bids(self) -> bool:
        return self.pricing_mode is PricingMode.BIDDING

    @classmethod
    def from_document(cls, doc: Document) -> "Listing":
        data = doc.data
        owner_id = data.get("userId")
        if not owner_id:
            raise InvalidDocument(f"Listing {doc.id} has no owner")
        mode = parse_enum(PricingMode, data.get("pricingType"), "pricing mode")
        price = _number(data, "price", doc.id, default=None) if mode is PricingMode.FIXED else None
        return cls(
            id=doc.id,
            owner_id=str(owner_id),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            category=parse_category(data.get("category")),
            condition=parse_enum(Condition, data.get("condition"), "condition", default=Condition.GOOD),
            pricing_mode=mode,
            status=parse_enum(ListingStatus, data.get("status"), "listing status"),
            price=price,
            visibility=parse_enum(Visibility, data.get("visibility"), "visibility", default=Visibility.UNIVERSITY),
            university=_optional_str(data.get("university")),
            seller_name=_optional_str(data.get("sellerName")),
            images=list(data.get("images") or []),
            views=int(data.get("views") or 0),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            sold_at=data.get("soldAt"),
            deleted_at=data.get("deletedAt"),
            accepted_bid_id=_optional_str(data.get("acceptedBidId")),
            approved_at=data.get("approvedAt"),
            approved_by=_optional_str(data.get("approvedBy")),
            seller_rating=_number(data, "sellerRating", doc.id),
            total_ratings=int(data.get("totalRatings") or 0),
        )


def draft_to_document(draft: ListingDraft, owner_id: str, seller_name: str) -> Dict[str, Any]:
    return {
        "userId": owner_id,
        "title": draft.title,
        "description": draft.description,
        "category": draft.category.value,
        "condition": draft.condition.value,
        "pricingType": draft.pricing_mode.value,
        "price": draft.price,
        "visibility": draft.visibility.value,
        "university": draft.university,
        "images": list(draft.images),
        "sellerName": seller_name,
        "status": ListingStatus.PENDING.value,
        "views": 0,
        "sellerRating": 0,
        "totalRatings": 0,
    }


@dataclass(frozen=True)
class Bid:
    id: str
    listing_id: str
    bidder_id: str
    amount: float
    status: BidStatus
    bidder_name: str = ANONYMOUS
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Document) -> "Bid":
        data = doc.data
        if not data.get("listingId") or not data.get("userId"):
            raise InvalidDocument(f"Bid {doc.id} is missing its listing or bidder")
        return cls(
            id=doc.id,
            listing_id=str(data["listingId"]),
            bidder_id=str(data["userId"]),
            amount=_number(data, "amount", doc.id),
            status=parse_enum(BidStatus, data.get("status"), "bid status"),
            bidder_name=str(data.get("bidderName") or ANONYMOUS),
            created_at=data.get("createdAt"),
            accepted_at=data.get("acceptedAt"),
            rejected_at=data.get("rejectedAt"),
        )


@dataclass(frozen=True)
class SellerBid:
    bid: Bid
    listing_title: str


@dataclass(frozen=True)
class Conversation:
    id: str
    buyer_id: str
    seller_id: str
    listing_id: Optional[str] = None
    service_id: Optional[str] = None
    last_message: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_read: Optional[datetime] = None

    @property
    def participants(self) -> tuple:
        return (self.buyer_id, self.seller_id)

    @classmethod
    def from_document(cls, doc: Document) -> "Conversation":
        data = doc.data
        seller_id = data.get("sellerId") or data.get("providerId")
        if not data.get("buyerId") or not seller_id:
            raise InvalidDocument(f"Conversation {doc.id} is missing a participant")
        return cls(
            id=doc.id,
            buyer_id=str(data["buyerId"]),
            seller_id=str(seller_id),
            listing_id=_optional_str(data.get("listingId")),
            service_id=_optional_str(data.get("serviceId")),
            last_message=str(data.get("lastMessage") or ""),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            last_read=data.get("lastRead"),
        )


@dataclass(frozen=True)
class Message:
    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    text: str
    kind: MessageKind = MessageKind.TEXT
    timestamp: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Document) -> "Message":
        data = doc.data
        return cls(
            id=doc.id,
            conversation_id=str(data.get("conversationId") or ""),
            sender_id=str(data.get("senderId") or ""),
            receiver_id=str(data.get("receiverId") or ""),
            text=str(data.get("text") or ""),
            kind=parse_enum(MessageKind, data.get("type"), "message kind", default=MessageKind.TEXT),
            timestamp=data.get("timestamp"),
        )


@dataclass(frozen=True)
class UserProfile:
    id: str
    email: str = ""
    uid: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    display_name: str = ""
    role: Role = Role.STUDENT
    suspended: bool = False
    university: Optional[str] = None
    rating: float = 0.0
    total_ratings: int = 0

    @property
    def full_name(self) -> str:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.display_name or ANONYMOUS

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @classmethod
    def from_document(cls, doc: Document) -> "UserProfile":
        data = doc.data
        return cls(
            id=doc.id,
            email=str(data.get("email") or ""),
            uid=_optional_str(data.get("uid")),
            first_name=str(data.get("firstName") or ""),
            last_name=str(data.get("lastName") or ""),
            display_name=str(data.get("displayName") or ""),
            role=parse_enum(Role, data.get("role"), "role", default=Role.STUDENT),
            suspended=bool(data.get("suspended", False)),
            university=_optional_str(data.get("university")),
            rating=_number(data, "rating", doc.id),
            total_ratings=int(data.get("totalRatings") or 0),
        )


@dataclass(frozen=True)
class Review:
    id: str
    reviewer_id: str
    seller_id: str
    rating: int
    comment: str = ""
    listing_id: Optional[str] = None
    service_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Document) -> "Review":
        data = doc.data
        return cls(
            id=doc.id,
            reviewer_id=str(data.get("reviewerId") or ""),
            seller_id=str(data.get("sellerId") or ""),
            rating=int(data.get("rating") or 0),
            comment=str(data.get("comment") or ""),
            listing_id=_optional_str(data.get("listingId")),
            service_id=_optional_str(data.get("serviceId")),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )


@dataclass(frozen=True)
class Service:
    id: str
    provider_id: str
    title: str
    description: str
    category: str
    status: ServiceStatus
    hourly_rate: Optional[float] = None
    skill_level: Optional[str] = None
    availability: Optional[str] = None
    university: Optional[str] = None
    provider_name: str = ANONYMOUS
    provider_rating: float = 0.0
    total_ratings: int = 0
    views: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Document) -> "Service":
        data = doc.data
        if not data.get("userId"):
            raise InvalidDocument(f"Service {doc.id} has no provider")
        rate = _number(data, "hourlyRate", doc.id, default=None)
        return cls(
            id=doc.id,
            provider_id=str(data["userId"]),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            category=str(data.get("category") or Category.OTHER.value),
            status=parse_enum(ServiceStatus, data.get("status"), "service status"),
            hourly_rate=rate,
            skill_level=_optional_str(data.get("skillLevel")),
            availability=_optional_str(data.get("availability")),
            university=_optional_str(data.get("university")),
            provider_name=str(data.get("providerName") or ANONYMOUS),
            provider_rating=_number(data, "providerRating", doc.id),
            total_ratings=int(data.get("totalRatings") or 0),
            views=int(data.get("views") or 0),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            deleted_at=data.get("deletedAt"),
        )


def running_average(current: float, count: int, rating: float) -> tuple:
    new_count = count + 1
    return ((current * count) + rating) / new_count, new_count
