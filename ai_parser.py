# ai_parser.py
import base64
import json
import re
from dataclasses import replace
from typing import Optional, Protocol

import requests

import config
from errors import MalformedResponseError, ProviderError, RateLimitError, TransportError
from image_normalizer import normalize, normalized_mime_type
from models import ExtractionResult, ReceiptItem
from utils import clamp, get_logger, to_float, to_int

log = get_logger("ai_parser")

SYSTEM_INSTRUCTION = "You are an expert at reading restaurant receipts and extracting itemized data."

RESTAURANT_NAME_FIELD = """- "restaurant_name": the name of the restaurant/business (short, clean name - e.g., "Encanto Cafe", "Wild Rooster", "Starbucks")
"""

RESTAURANT_NAME_RULES = """
For "restaurant_name":
- Look at the TOP of the receipt for the business name (usually in larger text or the first line)
- Extract a SHORT, CLEAN name (2-4 words max)
- Examples: "ENCANTO RESTAURANTE CAFE" -> "Encanto Cafe", "WILD ROOSTER CAFE BAR" -> "Wild Rooster"
- Remove words like "RESTAURANTE", "S.A. DE C.V.", "RFC:", addresses, etc.
- If unclear, return null
"""

PROMPT_TEMPLATE = """
Analyze this restaurant receipt image and extract all line items.
Return a JSON object with:
{restaurant_field}- "items": array of line items
- "receipt_total": the TOTAL amount shown on the receipt (the final total, including tax if shown)
{restaurant_rules}
Each item in the "items" array should have:
- "name": the item name (string)
- "quantity": always set to 1 (we use line totals, not unit prices)
- "price": the LINE TOTAL price shown on the receipt (number, without currency symbol)
- "is_modifier": true if this is a modifier/add-on to the previous item (like extra ingredients, milk type, etc.), false if it's a main item

### RULES
1. "price" is the TOTAL AMOUNT printed on that line of the receipt.
   - If the receipt shows "2 LATTE $130.00", return quantity: 1, price: 130.00 (the line total)
   - Do NOT multiply quantity by price - the receipt already shows the line total
2. Always set quantity to 1 since we're using the line total price.
3. Each item's name MUST be paired with the price that appears on the SAME LINE of the receipt.
4. ONLY include lines where BOTH an item name AND a price appear together on the same row.
5. COMPLETELY SKIP any line without a price on it, including:
   - Cooking instructions (e.g., "Medium Well", "No Ice", "Extra Hot")
   - Preparation notes (e.g., "See Server", "N/A")
   - Sub-item descriptions (e.g., "Agua Natural" below a drink without its own price)
6. Do NOT shift prices from one item to another.
7. For "receipt_total", use the final TOTAL line printed on the receipt (may be labeled "TOTAL:", "Total", etc.). Do not add up the items yourself.
8. Include ALL items with prices, even if the same item name appears multiple times.
   - If "LECHE COCO $10.00" appears twice (once under LATTE, once under BEBIDA), include BOTH entries.
   - Each line with a price is a separate entry in the items array.

Do NOT include subtotals, tax (IVA), or tips in the items array.

### EXAMPLE
Receipt:
  CANT. DESCRIPCION              IMPORTE
  1     Limonada                  66.00
        Agua Natural
  2     Latte                    130.00
        Leche Deslactosada        10.00
  1     Bohemia Obs               74.00
  ================================
  TOTAL:                        $280.00

Return:
{{
{restaurant_example}  "receipt_total": 280.00,
  "items": [
    {{"name": "Limonada", "quantity": 1, "price": 66.00, "is_modifier": false}},
    {{"name": "Latte", "quantity": 1, "price": 130.00, "is_modifier": false}},
    {{"name": "Leche Deslactosada", "quantity": 1, "price": 10.00, "is_modifier": true}},
    {{"name": "Bohemia Obs", "quantity": 1, "price": 74.00, "is_modifier": false}}
  ]
}}

Return ONLY the JSON object, no other text.
"""


def build_prompt(with_restaurant_name: bool) -> str:
    if with_restaurant_name:
        return PROMPT_TEMPLATE.format(
            restaurant_field=RESTAURANT_NAME_FIELD,
            restaurant_rules=RESTAURANT_NAME_RULES,
            restaurant_example='  "restaurant_name": "Encanto Cafe",\n',
        )
    return PROMPT_TEMPLATE.format(restaurant_field="", restaurant_rules="", restaurant_example="")


def media_type(content_type: Optional[str]) -> str:
    ct = (content_type or "").lower()
    if "jpeg" in ct or "jpg" in ct:
        return "image/jpeg"
    for kind in ("png", "gif", "webp"):
        if kind in ct:
            return f"image/{kind}"
    return "image/jpeg"


def strip_code_fences(text: str) -> str:
    text = re.sub(r"```json\n?", "", text)
    text = re.sub(r"```\n?", "", text)
    return text.strip()


_RATE_LIMIT_RE = re.compile(r"\brate\b|rate[_ -]?limit|quota", re.I)


def is_rate_limit_error(error) -> bool:
    if not isinstance(error, dict):
        return bool(_RATE_LIMIT_RE.search(str(error or "")))
    if error.get("type") == "rate_limit_error":
        return True
    if str(error.get("code")) == "429" or error.get("status") == "RESOURCE_EXHAUSTED":
        return True
    return bool(_RATE_LIMIT_RE.search(str(error.get("message") or "")))


def raise_for_error_field(data: dict):
    """Turn a provider's top-level "error" object into the matching exception."""
    error = data.get("error")
    if not error:
        return
    message = error.get("message") if isinstance(error, dict) else str(error)
    message = message or ""
    if is_rate_limit_error(error):
        raise RateLimitError(message)
    raise ProviderError(message)


def coerce_item(raw) -> Optional[ReceiptItem]:
    if not isinstance(raw, dict):
        return None
    name = raw.get("name")
    if name is None:
        name = raw.get("item")
    return ReceiptItem(
        name="" if name is None else str(name),
        quantity=clamp(to_int(raw.get("quantity")), 1, 100),
        price=max(0.0, round(to_float(raw.get("price")), 2)),
        is_modifier=raw.get("is_modifier") is True,
    )


def decode_payload(text: str):
    clean = strip_code_fences(text)
    try:
        return json.loads(clean)
    except ValueError as e:
        raise MalformedResponseError(f"Failed to parse model JSON: {e}, text: {clean[:200]}") from e


def build_result(parsed, with_restaurant_name: bool) -> ExtractionResult:
    """Normalize either response shape (object with "items" or a bare array)."""
    receipt_total = None
    restaurant_name = None

    if isinstance(parsed, dict) and isinstance(parsed.get("items"), list):
        raw_total = parsed.get("receipt_total")
        if raw_total not in (None, ""):
            receipt_total = round(to_float(raw_total), 2)
        if with_restaurant_name and parsed.get("restaurant_name"):
            restaurant_name = str(parsed["restaurant_name"]).strip() or None
        items_array = parsed["items"]
    elif isinstance(parsed, list):
        # older prompt returned a bare array of items
        items_array = parsed
    else:
        items_array = []

    items = tuple(item for item in (coerce_item(raw) for raw in items_array) if item is not None)
    return ExtractionResult(items=items, receipt_total=receipt_total, restaurant_name=restaurant_name)


def _dig(data, *path):
    for key in path:
        try:
            data = data[key]
        except (KeyError, IndexError, TypeError):
            return None
    return data


def post_json(url: str, headers: dict, body: dict, timeout: float, params: Optional[dict] = None) -> dict:
    try:
        resp = requests.post(url, headers=headers, params=params, json=body, timeout=timeout)
    except requests.RequestException as e:
        raise TransportError(str(e)) from e

    try:
        data = resp.json()
    except ValueError as e:
        if resp.status_code == 429:
            raise RateLimitError(f"HTTP 429: {resp.text[:200]}") from e
        raise MalformedResponseError(f"HTTP {resp.status_code}: response body is not JSON") from e

    if not isinstance(data, dict):
        raise MalformedResponseError(f"HTTP {resp.status_code}: unexpected response shape")
    if resp.status_code == 429 and not data.get("error"):
        raise RateLimitError("HTTP 429")
    return data


def run_guarded(provider: str, call) -> ExtractionResult:
    """Run one provider call; every failure becomes a well-formed result."""
    try:
        return call()
    except RateLimitError as e:
        log.error(f"{provider} rate limit: {e}")
        return ExtractionResult(rate_limited=True)
    except TransportError as e:
        log.error(f"{provider} transport error: {e}")
    except ProviderError as e:
        log.error(f"{provider} API error: {e}")
    except MalformedResponseError as e:
        log.error(f"{provider} malformed response: {e}")
    return ExtractionResult()


class ReceiptExtractor(Protocol):
    name: str

    def extract(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> ExtractionResult:
        ...


class AnthropicReceiptParser:
    """Primary provider: Anthropic Messages API (message/content-blocks shape)."""

    name = "Claude"

    def __init__(self, api_key=None, model=None, api_url=None, timeout=None):
        self.api_key = api_key if api_key is not None else config.ANTHROPIC_API_KEY
        self.model = model or config.ANTHROPIC_MODEL
        self.api_url = api_url or config.ANTHROPIC_API_URL
        self.timeout = timeout or config.PROVIDER_TIMEOUT_SECONDS

    def build_request(self, image_bytes: bytes, mime_type: str) -> dict:
        return {
            "model": self.model,
            "max_tokens": 4096,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": media_type(mime_type),
                                "data": base64.b64encode(image_bytes).decode("ascii"),
                            },
                        },
                        {"type": "text", "text": build_prompt(with_restaurant_name=True)},
                    ],
                }
            ],
        }

    def parse_response(self, data: dict) -> ExtractionResult:
        raise_for_error_field(data)
        text = _dig(data, "content", 0, "text")
        if not isinstance(text, str):
            raise MalformedResponseError("response has no text content block")
        log.debug(f"Raw Claude response: {text}")
        return build_result(decode_payload(text), with_restaurant_name=True)

    def _call(self, image_bytes: bytes, mime_type: str) -> ExtractionResult:
        if not self.api_key:
            raise ProviderError("ANTHROPIC_API_KEY is not set")
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": config.ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }
        data = post_json(self.api_url, headers, self.build_request(image_bytes, mime_type), self.timeout)
        return self.parse_response(data)

    def extract(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> ExtractionResult:
        return run_guarded(self.name, lambda: self._call(image_bytes, mime_type))


class GeminiReceiptParser:
    """Fallback provider: Gemini generateContent (contents/parts shape). Never reports a restaurant name."""

    name = "Gemini"

    def __init__(self, api_key=None, model=None, api_url=None, timeout=None):
        self.api_key = api_key if api_key is not None else config.GEMINI_API_KEY
        self.model = model or config.GEMINI_MODEL
        self.api_url = (api_url or config.GEMINI_API_URL).format(model=self.model)
        self.timeout = timeout or config.PROVIDER_TIMEOUT_SECONDS

    def build_request(self, image_bytes: bytes, mime_type: str) -> dict:
        return {
            "contents": [
                {
                    "parts": [
                        {"text": build_prompt(with_restaurant_name=False)},
                        {
                            "inline_data": {
                                "mime_type": media_type(mime_type),
                                "data": base64.b64encode(image_bytes).decode("ascii"),
                            }
                        },
                    ]
                }
            ],
            "generationConfig": {"response_mime_type": "application/json"},
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
        }

    def parse_response(self, data: dict) -> ExtractionResult:
        raise_for_error_field(data)
        text = _dig(data, "candidates", 0, "content", "parts", 0, "text")
        if not isinstance(text, str):
            raise MalformedResponseError("response has no candidate text")
        log.debug(f"Raw Gemini response: {text}")
        return build_result(decode_payload(text), with_restaurant_name=False)

    def _call(self, image_bytes: bytes, mime_type: str) -> ExtractionResult:
        if not self.api_key:
            raise ProviderError("GEMINI_API_KEY is not set")
        data = post_json(
            self.api_url,
            {"Content-Type": "application/json"},
            self.build_request(image_bytes, mime_type),
            self.timeout,
            params={"key": self.api_key},
        )
        return self.parse_response(data)

    def extract(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> ExtractionResult:
        return run_guarded(self.name, lambda: self._call(image_bytes, mime_type))


def parse_receipt_image(image_bytes: bytes, mime_type: str = "image/jpeg",
                        primary: Optional[ReceiptExtractor] = None,
                        fallback: Optional[ReceiptExtractor] = None) -> ExtractionResult:
    """
    Extract line items from a receipt photo.

    The image is shrunk once if needed, then sent to the primary provider.
    Only a rate-limited answer sends it on to the fallback provider; any other
    failure comes back as an empty result. Raises ImageDecodeError if the
    upload is not a readable image.
    """
    primary = primary or AnthropicReceiptParser()
    fallback = fallback or GeminiReceiptParser()

    payload = normalize(image_bytes, config.MAX_IMAGE_SIZE_BYTES, config.MAX_IMAGE_DIMENSION)
    mime_type = normalized_mime_type(image_bytes, payload, mime_type)

    result = primary.extract(payload, mime_type)
    if not result.rate_limited:
        log.info(f"{primary.name} returned {len(result.items)} item(s)")
        return result

    log.info(f"{primary.name} rate limited, falling back to {fallback.name}")
    result = fallback.extract(payload, mime_type)
    if result.rate_limited:
        return ExtractionResult(rate_limited=True)
    log.info(f"{fallback.name} returned {len(result.items)} item(s)")
    return replace(result, restaurant_name=None)
