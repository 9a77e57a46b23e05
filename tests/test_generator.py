import io
import json
from urllib.error import HTTPError, URLError

import pytest

from wonderwhiz import generator as generator_module
from wonderwhiz.exceptions import GenerationFailure
from wonderwhiz.generator import (
    HttpContentGenerator,
    HttpImageGenerator,
    StaticContentGenerator,
    age_guidance,
    build_content_prompt,
    parse_generated_content,
)
from wonderwhiz.models import GeneratedContent


class FakeResponse:
    def __init__(self, payload: dict) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        return None


def chat_reply(text: str) -> dict:
    return {"choices": [{"message": {"content": text}}]}


def test_parse_json_surrounded_by_prose() -> None:
    reply = 'Sure! {"content": "Stars are giant balls of gas.", "facts": ["The Sun is a star"], "word_count": 6} Enjoy!'

    parsed = parse_generated_content(reply)

    assert parsed.content == "Stars are giant balls of gas."
    assert parsed.facts == ("The Sun is a star",)
    assert parsed.word_count == 6
    assert parsed.story_mode_content is None


def test_parse_plain_text_with_bullets() -> None:
    reply = "Stars shine because of fusion.\n- Fact one\n- Fact two\n1. Fact three\n* Fact four\n- Fact five\n- Fact six"

    parsed = parse_generated_content(reply)

    assert parsed.content == "Stars shine because of fusion."
    assert parsed.facts == ("Fact one", "Fact two", "Fact three", "Fact four", "Fact five")


def test_parse_rejects_empty_reply() -> None:
    with pytest.raises(GenerationFailure):
        parse_generated_content("   ")
    with pytest.raises(GenerationFailure):
        parse_generated_content('{"content": ""}')


def test_prompt_mentions_age_and_titles() -> None:
    prompt = build_content_prompt("Space", "Black Holes", "", 7)

    assert '"Black Holes"' in prompt
    assert '"Space"' in prompt
    assert "Target Age: 7 years old" in prompt
    assert "simple, fun language" in prompt
    assert "13-16 years" in age_guidance(15)


def test_http_generator_posts_chat_request(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    def fake_urlopen(request, timeout):
        captured["url"] = request.full_url
        captured["headers"] = dict(request.header_items())
        captured["body"] = json.loads(request.data.decode("utf-8"))
        captured["timeout"] = timeout
        return FakeResponse(chat_reply('{"content": "Black holes bend light.", "facts": ["They are dense"]}'))

    monkeypatch.setattr(generator_module, "urlopen", fake_urlopen)
    generator = HttpContentGenerator("secret", url="https://llm.example/v1/chat", model="demo", timeout=3)

    content = generator.generate("Black Holes", "Gravity traps", "Space", 11)

    assert content.content == "Black holes bend light."
    assert content.facts == ("They are dense",)
    assert captured["url"] == "https://llm.example/v1/chat"
    assert captured["headers"]["Authorization"] == "Bearer secret"
    assert captured["body"]["model"] == "demo"
    assert captured["body"]["messages"][0]["role"] == "system"
    assert captured["timeout"] == 3


def test_http_generator_errors_become_generation_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    generator = HttpContentGenerator("secret")

    def http_error(request, timeout):
        raise HTTPError(request.full_url, 429, "Too Many Requests", {}, io.BytesIO(b""))

    def offline(request, timeout):
        raise URLError("no route to host")

    monkeypatch.setattr(generator_module, "urlopen", http_error)
    with pytest.raises(GenerationFailure):
        generator.generate("Stars", "", "Space", 9)

    monkeypatch.setattr(generator_module, "urlopen", offline)
    with pytest.raises(GenerationFailure):
        generator.generate("Stars", "", "Space", 9)

    monkeypatch.setattr(generator_module, "urlopen", lambda request, timeout: FakeResponse({"choices": []}))
    with pytest.raises(GenerationFailure):
        generator.generate("Stars", "", "Space", 9)

    with pytest.raises(GenerationFailure):
        HttpContentGenerator("").generate("Stars", "", "Space", 9)


def test_image_generator_returns_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        generator_module,
        "urlopen",
        lambda request, timeout: FakeResponse({"image_url": "https://images.example/stars.png"}),
    )

    url = HttpImageGenerator("https://images.example/generate").generate_image("Stars", "Stars shine", 8)

    assert url == "https://images.example/stars.png"

    monkeypatch.setattr(generator_module, "urlopen", lambda request, timeout: FakeResponse({}))
    with pytest.raises(GenerationFailure):
        HttpImageGenerator("https://images.example/generate").generate_image("Stars", "Stars shine", 8)


def test_static_generator_records_calls() -> None:
    generator = StaticContentGenerator({"Stars": GeneratedContent(content="Twinkle.")})

    assert generator.generate("Stars", "", "Space", 6).content == "Twinkle."
    with pytest.raises(GenerationFailure):
        generator.generate("Moons", "", "Space", 6)
    assert generator.calls == ["Stars", "Moons"]
