from types import SimpleNamespace

import openai
import pytest

from campus_market.adapters.ai.openai_chat import OpenAIChatCompletion
from campus_market.application.assistant import (
    PriceEstimator,
    ShoppingAssistant,
    extract_filters,
    parse_json_reply,
)
from campus_market.domain.errors import UpstreamUnavailable
from campus_market.domain.models import Condition
from campus_market.domain.ports import ChatCompletionPort
from campus_market.infrastructure.config import Settings


class FakeChat(ChatCompletionPort):
    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    async def complete(self, messages, temperature=0.7, max_tokens=1000, model=None):
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        return self.replies.pop(0)


@pytest.mark.parametrize("text, expected", [
    ('{"name": "lamp"}', {"name": "lamp"}),
    ('```json\n{"name": "lamp"}\n```', {"name": "lamp"}),
    ("```\n{\"max_price\": 20}\n```", {"max_price": 20}),
    ("What is your budget?", None),
    ("[1, 2]", None),
])
def test_parse_json_reply(text, expected):
    assert parse_json_reply(text) == expected


@pytest.mark.asyncio
async def test_reply_sends_prompt_and_history():
    chat = FakeChat('{"name": "desk", "max_price": 50}')
    history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]

    reply = await ShoppingAssistant(chat).reply("a cheap desk", history)

    assert reply == {"name": "desk", "max_price": 50}
    sent = chat.calls[0]["messages"]
    assert sent[0]["role"] == "system"
    assert sent[1:3] == history
    assert sent[-1] == {"role": "user", "content": "a cheap desk"}
    assert chat.calls[0]["temperature"] == 0.7
    assert chat.calls[0]["max_tokens"] == 1000


@pytest.mark.asyncio
async def test_reply_falls_back_to_plain_text():
    chat = FakeChat("Which course is the textbook for?")
    assert await ShoppingAssistant(chat).reply("textbook") == {"response": "Which course is the textbook for?"}


def test_extract_filters_maps_labels():
    filters = extract_filters({
        "name": "guitar",
        "category": "Musical Instruments",
        "min_price": 0,
        "max_price": 120.0,
        "condition": "Like New",
        "pricing_type": "Open to Bids",
    })
    assert filters == {
        "searchQuery": "guitar",
        "category": "Musical Instruments",
        "minPrice": "0",
        "maxPrice": "120",
        "condition": "like-new",
        "pricingType": "bidding",
    }


def test_extract_filters_passes_unknown_labels_through():
    assert extract_filters({"condition": "Very Worn", "pricing_type": "Swap"}) == {
        "condition": "very-worn",
        "pricingType": "swap",
    }
    assert extract_filters({"response": "Tell me more"}) == {}


@pytest.mark.asyncio
async def test_estimate():
    chat = FakeChat('{"condition": "Like New", "price": 35}')
    estimate = await PriceEstimator(chat).estimate("Desk lamp", "Works fine", "Furniture")
    assert estimate.condition is Condition.LIKE_NEW
    assert estimate.price == 35.0
    assert "Title: Desk lamp" in chat.calls[0]["messages"][1]["content"]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", [
    "I think it is worth about $20",
    '{"condition": "mint", "price": 20}',
    '{"condition": "good", "price": -3}',
])
async def test_unusable_estimate_is_upstream_failure(text):
    with pytest.raises(UpstreamUnavailable):
        await PriceEstimator(FakeChat(text)).estimate("Lamp", "")


@pytest.mark.asyncio
async def test_market_analysis(catalog, listing_id):
    listing = await catalog.get_listing(listing_id)
    chat = FakeChat("A fair deal at around 30.")
    text = await PriceEstimator(chat).market_analysis(listing)
    assert text == "A fair deal at around 30."
    prompt = chat.calls[0]["messages"][1]["content"]
    assert "Title: Calculus textbook" in prompt
    assert "Condition: like-new" in prompt
    assert "Price: Open to offers" in prompt


class FakeCompletions:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.result


def fake_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


@pytest.mark.asyncio
async def test_openai_adapter_returns_stripped_content():
    completions = FakeCompletions(result=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="  {\"name\": \"lamp\"}\n"))]
    ))
    adapter = OpenAIChatCompletion(Settings(groq_model="test-model"), client=fake_client(completions))

    text = await adapter.complete([{"role": "user", "content": "lamp"}], temperature=0.2, max_tokens=50)

    assert text == '{"name": "lamp"}'
    assert completions.kwargs["model"] == "test-model"
    assert completions.kwargs["temperature"] == 0.2
    assert completions.kwargs["max_tokens"] == 50


@pytest.mark.asyncio
async def test_openai_adapter_maps_sdk_errors():
    completions = FakeCompletions(error=openai.OpenAIError("rate limited"))
    adapter = OpenAIChatCompletion(Settings(), client=fake_client(completions))
    with pytest.raises(UpstreamUnavailable):
        await adapter.complete([{"role": "user", "content": "x"}])


@pytest.mark.asyncio
async def test_openai_adapter_handles_empty_choices():
    completions = FakeCompletions(result=SimpleNamespace(choices=[]))
    adapter = OpenAIChatCompletion(Settings(), client=fake_client(completions))
    assert await adapter.complete([{"role": "user", "content": "x"}]) == ""


def test_openai_adapter_needs_key():
    with pytest.raises(RuntimeError):
        OpenAIChatCompletion(Settings(groq_api_key=""))
