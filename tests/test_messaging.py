import pytest

from campus_market.domain.errors import InvalidDocument, NotFound, PermissionDenied
from campus_market.domain.models import MessageKind

from conftest import ALICE, BOB, SELLER


@pytest.fixture
async def conversation(messaging, listing_id):
    return await messaging.ensure_conversation(ALICE, SELLER, listing_id=listing_id)


@pytest.mark.asyncio
async def test_ensure_conversation_is_idempotent(messaging, listing_id, conversation):
    again = await messaging.ensure_conversation(ALICE, SELLER, listing_id=listing_id)
    assert again.id == conversation.id
    other = await messaging.ensure_conversation(BOB, SELLER, listing_id=listing_id)
    assert other.id != conversation.id


@pytest.mark.asyncio
async def test_conversation_needs_exactly_one_subject(messaging):
    with pytest.raises(ValueError):
        await messaging.ensure_conversation(ALICE, SELLER)
    with pytest.raises(ValueError):
        await messaging.ensure_conversation(ALICE, SELLER, listing_id="l", service_id="s")


@pytest.mark.asyncio
async def test_service_conversations_are_keyed_by_provider(messaging, people):
    convo = await messaging.ensure_conversation(ALICE, SELLER, service_id="svc-1")
    assert convo.seller_id == SELLER
    assert convo.service_id == "svc-1"
    found = await messaging.find_conversation(ALICE, SELLER, service_id="svc-1")
    assert found.id == convo.id


@pytest.mark.asyncio
async def test_send_message_routes_to_other_participant(messaging, conversation):
    from_buyer = await messaging.send_message(conversation.id, ALICE, "  Is it still available? ")
    assert from_buyer.receiver_id == SELLER
    assert from_buyer.text == "Is it still available?"

    reply = await messaging.send_message(conversation.id, SELLER, "Yes")
    assert reply.receiver_id == ALICE

    texts = [m.text for m in await messaging.list_messages(conversation.id)]
    assert texts == ["Is it still available?", "Yes"]
    assert (await messaging.get_conversation(conversation.id)).last_message == "Yes"


@pytest.mark.asyncio
async def test_send_message_validation(messaging, conversation):
    with pytest.raises(InvalidDocument):
        await messaging.send_message(conversation.id, ALICE, "   ")
    with pytest.raises(PermissionDenied):
        await messaging.send_message(conversation.id, BOB, "let me in")
    with pytest.raises(NotFound):
        await messaging.send_message("missing", ALICE, "hello")


@pytest.mark.asyncio
async def test_meetup_suggestion_has_its_own_preview(messaging, conversation):
    message = await messaging.suggest_meetup(conversation.id, SELLER, "the library", "Friday 3pm")
    assert message.kind is MessageKind.MEETUP
    assert "the library" in message.text
    assert (await messaging.get_conversation(conversation.id)).last_message == "[Meetup Suggestion]"


@pytest.mark.asyncio
async def test_seller_inbox_most_recent_first(messaging, listing_id, conversation):
    later = await messaging.ensure_conversation(BOB, SELLER, listing_id=listing_id)
    await messaging.send_message(conversation.id, ALICE, "bump")

    inbox = await messaging.list_conversations_for_seller(SELLER)
    assert [c.id for c in inbox] == [conversation.id, later.id]


@pytest.mark.asyncio
async def test_mark_read(messaging, conversation):
    await messaging.mark_read(conversation.id, SELLER)
    assert (await messaging.get_conversation(conversation.id)).last_read is not None
    with pytest.raises(PermissionDenied):
        await messaging.mark_read(conversation.id, BOB)
