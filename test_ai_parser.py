# test_ai_parser.py
import json

import pytest
import requests

import ai_parser
from ai_parser import (
    AnthropicReceiptParser,
    GeminiReceiptParser,
    build_prompt,
    build_result,
    coerce_item,
    is_rate_limit_error,
    parse_receipt_image,
    strip_code_fences,
)
from models import ExtractionResult, ReceiptItem

ITEMS_JSON = {
    "restaurant_name": "  Encanto Cafe ",
    "receipt_total": "280.00",
    "items": [
        {"name": "Limonada", "quantity": 1, "price": 66.0, "is_modifier": False},
        {"name": "Latte", "quantity": 2, "price": 130.0, "is_modifier": False},
        {"name": "Leche Deslactosada", "quantity": 1, "price": 10.0, "is_modifier": True},
        {"name": "Bohemia Obs", "quantity": 1, "price": 74.0, "is_modifier": False},
    ],
}


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=None):
        self.payload = payload
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self.payload is None:
            raise ValueError("no json")
        return self.payload


def fake_post(monkeypatch, response):
    calls = []

    def _post(url, **kwargs):
        calls.append((url, kwargs))
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(ai_parser.requests, "post", _post)
    return calls


def claude_text(text):
    return {"content": [{"type": "text", "text": text}]}


def gemini_text(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def test_coerce_item_clamps_and_rounds():
    item = coerce_item({"item": "Nachos", "quantity": "500", "price": "12.3456", "is_modifier": "true"})
    assert item == ReceiptItem("Nachos", 100, 12.35, False)
    assert coerce_item({"name": "Agua", "quantity": 0, "price": -4}) == ReceiptItem("Agua", 1, 0.0, False)
    assert coerce_item({"price": 5}).name == ""
    assert coerce_item("Latte 130.00") is None


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"items": []}\n```') == '{"items": []}'
    assert strip_code_fences('```\n[1]\n```\n') == '[1]'


def test_build_result_accepts_bare_array():
    result = build_result([{"item": "Taco", "price": 30}], with_restaurant_name=True)
    assert result.items == (ReceiptItem("Taco", 1, 30.0, False),)
    assert result.receipt_total is None
    assert result.restaurant_name is None


def test_build_result_with_object_shape():
    result = build_result(ITEMS_JSON, with_restaurant_name=True)
    assert len(result.items) == 4
    assert result.receipt_total == 280.00
    assert result.restaurant_name == "Encanto Cafe"
    assert result.items[1].quantity == 2
    assert result.items[2].is_modifier is True


def test_build_result_keeps_duplicate_lines():
    result = build_result([{"name": "Leche Coco", "price": 10}, {"name": "Leche Coco", "price": 10}], False)
    assert len(result.items) == 2


def test_rate_limit_detection():
    assert is_rate_limit_error({"type": "rate_limit_error", "message": ""})
    assert is_rate_limit_error({"code": 429, "message": "Too many"})
    assert is_rate_limit_error({"status": "RESOURCE_EXHAUSTED"})
    assert is_rate_limit_error({"message": "You exceeded your current quota"})
    assert is_rate_limit_error({"message": "Rate limit reached"})
    assert not is_rate_limit_error({"type": "invalid_request_error", "message": "Could not generate output"})


def test_prompts():
    claude = build_prompt(with_restaurant_name=True)
    gemini = build_prompt(with_restaurant_name=False)
    assert '"restaurant_name": "Encanto Cafe"' in claude
    assert "restaurant_name" not in gemini
    for prompt in (claude, gemini):
        assert "Do NOT multiply quantity by price" in prompt
        assert "Do NOT include subtotals, tax (IVA), or tips" in prompt


def test_claude_success(monkeypatch):
    text = "```json\n" + json.dumps(ITEMS_JSON) + "\n```"
    calls = fake_post(monkeypatch, FakeResponse(claude_text(text)))

    result = AnthropicReceiptParser(api_key="k").extract(b"img", "image/png")

    assert result.status == "ok"
    assert [i.name for i in result.items] == ["Limonada", "Latte", "Leche Deslactosada", "Bohemia Obs"]
    assert result.restaurant_name == "Encanto Cafe"
    url, kwargs = calls[0]
    assert url == "https://api.anthropic.com/v1/messages"
    assert kwargs["timeout"] == 60
    assert kwargs["headers"]["x-api-key"] == "k"
    assert kwargs["headers"]["anthropic-version"] == "2023-06-01"
    image_block = kwargs["json"]["messages"][0]["content"][0]
    assert image_block["source"] == {"type": "base64", "media_type": "image/png", "data": "aW1n"}


def test_claude_rate_limited(monkeypatch):
    fake_post(monkeypatch, FakeResponse({"type": "error", "error": {"type": "rate_limit_error", "message": "slow down"}}, 429))
    result = AnthropicReceiptParser(api_key="k").extract(b"img")
    assert result == ExtractionResult(rate_limited=True)


def test_claude_other_error_is_empty(monkeypatch):
    fake_post(monkeypatch, FakeResponse({"error": {"type": "invalid_request_error", "message": "bad image"}}, 400))
    result = AnthropicReceiptParser(api_key="k").extract(b"img")
    assert result.status == "empty"
    assert result.rate_limited is False


def test_malformed_json_is_empty(monkeypatch):
    fake_post(monkeypatch, FakeResponse(claude_text("Sorry, I can't read this receipt.")))
    assert AnthropicReceiptParser(api_key="k").extract(b"img").status == "empty"


def test_transport_error_is_empty(monkeypatch):
    fake_post(monkeypatch, requests.ConnectionError("boom"))
    assert GeminiReceiptParser(api_key="k").extract(b"img").status == "empty"


def test_non_json_body(monkeypatch):
    fake_post(monkeypatch, FakeResponse(None, 502, "<html>Bad gateway</html>"))
    assert AnthropicReceiptParser(api_key="k").extract(b"img").status == "empty"


def test_non_json_429_is_rate_limited(monkeypatch):
    fake_post(monkeypatch, FakeResponse(None, 429, "Too Many Requests"))
    assert GeminiReceiptParser(api_key="k").extract(b"img").rate_limited is True


def test_missing_api_key_skips_request(monkeypatch):
    calls = fake_post(monkeypatch, FakeResponse(claude_text("[]")))
    assert AnthropicReceiptParser(api_key="").extract(b"img").status == "empty"
    assert calls == []


def test_gemini_success_never_has_restaurant_name(monkeypatch):
    calls = fake_post(monkeypatch, FakeResponse(gemini_text(json.dumps(ITEMS_JSON))))

    result = GeminiReceiptParser(api_key="g", model="gemini-2.5-flash").extract(b"img", "image/webp")

    assert len(result.items) == 4
    assert result.receipt_total == 280.00
    assert result.restaurant_name is None
    url, kwargs = calls[0]
    assert url.endswith("/models/gemini-2.5-flash:generateContent")
    assert kwargs["params"] == {"key": "g"}
    parts = kwargs["json"]["contents"][0]["parts"]
    assert parts[1]["inline_data"] == {"mime_type": "image/webp", "data": "aW1n"}
    assert kwargs["json"]["generationConfig"] == {"response_mime_type": "application/json"}


def test_gemini_quota_error(monkeypatch):
    fake_post(monkeypatch, FakeResponse({"error": {"code": 429, "message": "Resource has been exhausted", "status": "RESOURCE_EXHAUSTED"}}, 429))
    assert GeminiReceiptParser(api_key="g").extract(b"img").rate_limited is True


def test_gemini_missing_candidates(monkeypatch):
    fake_post(monkeypatch, FakeResponse({"candidates": []}))
    assert GeminiReceiptParser(api_key="g").extract(b"img").status == "empty"


class FakeProvider:
    def __init__(self, name, result):
        self.name = name
        self.result = result
        self.calls = []

    def extract(self, image_bytes, mime_type="image/jpeg"):
        self.calls.append((image_bytes, mime_type))
        return self.result


THREE_ITEMS = tuple(ReceiptItem(n, 1, p, False) for n, p in [("Indio", 59.0), ("Elote", 65.0), ("Chelada", 15.0)])


def test_fallback_after_rate_limit():
    primary = FakeProvider("Claude", ExtractionResult(rate_limited=True))
    fallback = FakeProvider("Gemini", ExtractionResult(THREE_ITEMS, 139.0, "Should Not Leak"))

    result = parse_receipt_image(b"jpeg-bytes", "image/jpeg", primary, fallback)

    assert result.rate_limited is False
    assert result.restaurant_name is None
    assert len(result.items) == 3
    assert fallback.calls == [(b"jpeg-bytes", "image/jpeg")]


def test_both_rate_limited():
    primary = FakeProvider("Claude", ExtractionResult(rate_limited=True))
    fallback = FakeProvider("Gemini", ExtractionResult(rate_limited=True))
    result = parse_receipt_image(b"jpeg-bytes", "image/jpeg", primary, fallback)
    assert result == ExtractionResult(items=(), rate_limited=True)
    assert result.status == "rate_limited"


def test_other_failure_does_not_fall_back():
    primary = FakeProvider("Claude", ExtractionResult())
    fallback = FakeProvider("Gemini", ExtractionResult(THREE_ITEMS))
    result = parse_receipt_image(b"jpeg-bytes", "image/jpeg", primary, fallback)
    assert result.status == "empty"
    assert fallback.calls == []


def test_primary_success_keeps_restaurant_name():
    primary = FakeProvider("Claude", ExtractionResult(THREE_ITEMS, 139.0, "Las Nuevas"))
    fallback = FakeProvider("Gemini", ExtractionResult())
    result = parse_receipt_image(b"jpeg-bytes", "image/jpeg", primary, fallback)
    assert result.restaurant_name == "Las Nuevas"
    assert result.receipt_total == 139.0
    assert fallback.calls == []


def test_fallback_failure_is_empty_not_rate_limited():
    primary = FakeProvider("Claude", ExtractionResult(rate_limited=True))
    fallback = FakeProvider("Gemini", ExtractionResult())
    result = parse_receipt_image(b"jpeg-bytes", "image/jpeg", primary, fallback)
    assert result.status == "empty"


def test_unreadable_large_upload_raises(monkeypatch):
    from errors import ImageDecodeError

    monkeypatch.setattr(ai_parser.config, "MAX_IMAGE_SIZE_BYTES", 10)
    primary = FakeProvider("Claude", ExtractionResult(THREE_ITEMS))
    with pytest.raises(ImageDecodeError):
        parse_receipt_image(b"definitely not an image", "image/jpeg", primary, primary)
    assert primary.calls == []
