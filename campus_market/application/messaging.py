import asyncio
import logging
from typing import Callable, List, Optional, Set

from ..domain.documents import CONVERSATIONS, MESSAGES, Query, SERVER_TIMESTAMP
from ..domain.errors import InvalidDocument, NotFound, PermissionDenied
from ..domain.models import Bid, Conversation, Listing, Message, MessageKind, SYSTEM_SENDER

logger = logging.getLogger(__name__)

PREVIEW_BY_KIND = {MessageKind.MEETUP: "[Meetup Suggestion]"}


class MessagingService:
    def __init__(self, store) -> None:
        self.store = store

    async def find_conversation(
        self, buyer_id: str, seller_id: str, listing_id: Optional[str] = None, service_id: Optional[str] = None
    ) -> Optional[Conversation]:
        if bool(listing_id) == bool(service_id):
            raise ValueError("Exactly one of listing_id or service_id is required")
        if listing_id:
            q = Query(CONVERSATIONS).where("listingId", "==", listing_id).where("sellerId", "==", seller_id)
        else:
            q = Query(CONVERSATIONS).where("serviceId", "==", service_id).where("providerId", "==", seller_id)
        docs = await self.store.query(q.where("buyerId", "==", buyer_id).take(1))
        return Conversation.from_document(docs[0]) if docs else None

    async def ensure_conversation(
        self, buyer_id: str, seller_id: str, listing_id: Optional[str] = None, service_id: Optional[str] = None
    ) -> Conversation:
        existing = await self.find_conversation(buyer_id, seller_id, listing_id=listing_id, service_id=service_id)
        if existing is not None:
            return existing
        data = {
            "buyerId": buyer_id,
            "lastMessage": "",
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        }
        if listing_id:
            data.update({"listingId": listing_id, "sellerId": seller_id})
        else:
            data.update({"serviceId": service_id, "providerId": seller_id})
        doc = await self.store.add(CONVERSATIONS, data)
        logger.info("Opened conversation %s between %s and %s", doc.id, buyer_id, seller_id)
        return Conversation.from_document(doc)

    async def get_conversation(self, conversation_id: str) -> Conversation:
        doc = await self.store.get(CONVERSATIONS, conversation_id)
        if doc is None:
            raise NotFound("Conversation not found")
        return Conversation.from_document(doc)

    async def _append(self, conversation: Conversation, sender_id: str, receiver_id: str, text: str, kind: MessageKind) -> Message:
        doc = await self.store.add(MESSAGES, {
            "conversationId": conversation.id,
            "senderId": sender_id,
            "receiverId": receiver_id,
            "text": text,
            "type": kind.value,
            "timestamp": SERVER_TIMESTAMP,
        })
        await self.store.update(CONVERSATIONS, conversation.id, {
            "lastMessage": PREVIEW_BY_KIND.get(kind, text),
            "updatedAt": SERVER_TIMESTAMP,
        })
        return Message.from_document(doc)

    async def send_message(self, conversation_id: str, sender_id: str, text: str, kind: MessageKind = MessageKind.TEXT) -> Message:
        text = (text or "").strip()
        if not text:
            raise InvalidDocument("Message cannot be empty")
        conversation = await self.get_conversation(conversation_id)
        if sender_id not in conversation.participants:
            raise PermissionDenied("You are not part of this conversation")
        receiver_id = conversation.seller_id if sender_id == conversation.buyer_id else conversation.buyer_id
        return await self._append(conversation, sender_id, receiver_id, text, kind)

    async def suggest_meetup(self, conversation_id: str, sender_id: str, location: str, when: str) -> Message:
        return await self.send_message(conversation_id, sender_id, f"Let's meet at {location} on {when}", MessageKind.MEETUP)

    async def post_system_message(self, conversation: Conversation, text: str) -> Message:
        return await self._append(conversation, SYSTEM_SENDER, conversation.seller_id, text, MessageKind.SYSTEM)

    async def list_messages(self, conversation_id: str) -> List[Message]:
        docs = await self.store.query(
            Query(MESSAGES).where("conversationId", "==", conversation_id).order("timestamp")
        )
        return [Message.from_document(d) for d in docs]

    async def list_conversations_for_seller(self, seller_id: str, listing_id: Optional[str] = None) -> List[Conversation]:
        q = Query(CONVERSATIONS).where("sellerId", "==", seller_id)
        if listing_id:
            q = q.where("listingId", "==", listing_id)
        docs = await self.store.query(q.order("updatedAt", descending=True))
        return [Conversation.from_document(d) for d in docs]

    async def mark_read(self, conversation_id: str, user_id: str) -> None:
        conversation = await self.get_conversation(conversation_id)
        if user_id not in conversation.participants:
            raise PermissionDenied("You are not part of this conversation")
        await self.store.update(CONVERSATIONS, conversation_id, {"lastRead": SERVER_TIMESTAMP})


def format_bid_message(listing: Listing, bid: Bid) -> str:
    return (
        f"{bid.bidder_name} placed a bid of {bid.amount:,.2f} on \"{listing.title}\". "
        "Open Manage Bids to accept or reject it, or reply here to negotiate."
    )


class BidNotifier:
    """Tells the seller about a new bid through the listing's conversation.

    Runs detached from the bid write: failures are logged and handed to
    ``on_error`` but never reach whoever placed the bid.
    """

    def __init__(self, messaging: MessagingService, on_error: Optional[Callable[[BaseException], None]] = None) -> None:
        self.messaging = messaging
        self.on_error = on_error
        self._tasks: Set[asyncio.Task] = set()

    async def notify_bid_placed(self, listing: Listing, bid: Bid) -> Message:
        conversation = await self.messaging.ensure_conversation(
            buyer_id=bid.bidder_id, seller_id=listing.owner_id, listing_id=listing.id
        )
        return await self.messaging.post_system_message(conversation, format_bid_message(listing, bid))

    def spawn(self, listing: Listing, bid: Bid) -> asyncio.Task:
        task = asyncio.create_task(self.notify_bid_placed(listing, bid), name=f"bid-notify-{bid.id}")
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Bid notification %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("Bid notification %s failed", task.get_name(), exc_info=exc)
        if self.on_error is not None:
            try:
                self.on_error(exc)
            except Exception:
                logger.exception("Bid notification error handler failed")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
