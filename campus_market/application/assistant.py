import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..domain.errors import InvalidAmount, InvalidDocument, UpstreamUnavailable
from ..domain.models import Condition, Listing, parse_amount, parse_enum
from ..domain.ports import ChatCompletionPort

logger = logging.getLogger(__name__)

TEMPERATURE = 0.7
MAX_TOKENS = 1000

SYSTEM_PROMPT = """You are a helpful and intelligent shopping assistant. Return ONLY valid JSON.

Return only JSON with keys:
name (string)
category (string)
min_price (number)
max_price (number)
condition (string; one of: "New", "Like New", "Fair", "Good", "Poor")
pricing_type (string; one of: "Fixed Price", "Open to Bids", "Negotiable")

Understand and extract key information such as item name, category, price range, features, and brand preferences from natural language.
Clarify ambiguous requests politely when needed. Respond in a friendly, conversational tone.
Ask relevant follow-up questions to better understand the user's needs.

Available categories: "Textbooks", "Electronics", "Furniture", "Clothing", "Sports Equipment", "Musical Instruments", "Other"
Available conditions: "new", "like-new", "good", "fair", "poor"
Available pricing types: "fixed", "bidding", "negotiable"

If the user's message doesn't contain enough information to extract filters, return a JSON with a "response" key containing a follow-up question to gather more details."""

ESTIMATOR_PROMPT = (
    "You are an expert at estimating the condition and fair price of items in a student marketplace. "
    "Analyze the item details and suggest a condition (new, like-new, good, fair, poor) and a fair price in USD. "
    'Return only JSON in this format: {"condition": "condition-here", "price": number-here}'
)

ANALYST_PROMPT = (
    "You are an expert market analyst for student marketplace items. "
    "Analyze the listing and provide a detailed market value assessment and buying advice."
)

CONDITION_MAP = {
    "New": "new",
    "Like New": "like-new",
    "Good": "good",
    "Fair": "fair",
    "Poor": "poor",
}

PRICING_MAP = {
    "Fixed Price": "fixed",
    "Open to Bids": "bidding",
    "Negotiable": "negotiable",
}

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_json_reply(text: str) -> Optional[Dict[str, Any]]:
    """Decode a model reply as a JSON object, tolerating a markdown code fence."""
    text = (text or "").strip()
    m = _FENCE.match(text)
    if m:
        text = m.group(1)
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def extract_filters(reply: Dict[str, Any]) -> Dict[str, str]:
    filters: Dict[str, str] = {}
    if reply.get("name"):
        filters["searchQuery"] = str(reply["name"])
    if reply.get("category"):
        filters["category"] = str(reply["category"])
    if reply.get("min_price") is not None:
        filters["minPrice"] = _format_number(reply["min_price"])
    if reply.get("max_price") is not None:
        filters["maxPrice"] = _format_number(reply["max_price"])
    if reply.get("condition"):
        raw = str(reply["condition"])
        filters["condition"] = CONDITION_MAP.get(raw, raw.lower().replace(" ", "-"))
    if reply.get("pricing_type"):
        raw = str(reply["pricing_type"])
        filters["pricingType"] = PRICING_MAP.get(raw, raw.lower())
    return filters


class ShoppingAssistant:
    def __init__(self, chat: ChatCompletionPort) -> None:
        self.chat = chat

    async def reply(self, message: str, history: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        messages.extend(history or [])
        messages.append({"role": "user", "content": message})
        text = await self.chat.complete(messages, temperature=TEMPERATURE, max_tokens=MAX_TOKENS)
        data = parse_json_reply(text)
        if data is None:
            # Not JSON: the model is asking a follow-up question.
            return {"response": text}
        return data


@dataclass(frozen=True)
class PriceEstimate:
    condition: Condition
    price: float


class PriceEstimator:
    def __init__(self, chat: ChatCompletionPort) -> None:
        self.chat = chat

    async def estimate(self, title: str, description: str, category: Optional[str] = None) -> PriceEstimate:
        lines = [
            "Please analyze this item and suggest a condition and fair price:",
            f"Title: {title}",
            f"Description: {description}",
        ]
        if category:
            lines.append(f"Category: {category}")
        text = await self.chat.complete(
            [
                {"role": "system", "content": ESTIMATOR_PROMPT},
                {"role": "user", "content": "\n".join(lines)},
            ],
            temperature=TEMPERATURE,
            max_tokens=MAX_TOKENS,
        )
        data = parse_json_reply(text)
        if data is None:
            logger.warning("Unparseable estimate: %r", text[:200])
            raise UpstreamUnavailable("Could not get an estimate, please try again")
        try:
            condition = parse_enum(Condition, CONDITION_MAP.get(str(data.get("condition")), data.get("condition")), "condition")
            price = parse_amount(data.get("price"), "Estimated price")
        except (InvalidAmount, InvalidDocument) as exc:
            logger.warning("Estimate had unusable fields: %s", exc)
            raise UpstreamUnavailable("Could not get an estimate, please try again") from exc
        return PriceEstimate(condition=condition, price=price)

    async def market_analysis(self, listing: Listing) -> str:
        price = _format_number(listing.price) if listing.price is not None else "Open to offers"
        prompt = (
            "Please analyze this listing and provide:\n"
            "1. A summary of the item\n"
            "2. Estimated market value\n"
            "3. Fair price recommendation\n"
            "4. Buying advice\n"
            "5. give every thing into one paragraph\n\n"
            "Listing details:\n"
            f"Title: {listing.title}\n"
            f"Price: {price}\n"
            f"Condition: {listing.condition.value}\n"
            f"Category: {listing.category.value}\n"
            f"Description: {listing.description}"
        )
        text = await self.chat.complete(
            [{"role": "system", "content": ANALYST_PROMPT}, {"role": "user", "content": prompt}],
            temperature=TEMPERATURE,
            max_tokens=MAX_TOKENS,
        )
        if not text:
            raise UpstreamUnavailable("Invalid response format from the assistant")
        return text
