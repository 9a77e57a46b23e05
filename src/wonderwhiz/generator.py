"""HTTP content and image generators backed by chat-completion style APIs."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request as URLRequest, urlopen

from .exceptions import GenerationFailure
from .models import GeneratedContent

DEFAULT_GENERATOR_URL = "https://api.groq.com/openai/v1/chat/completions"
DEFAULT_GENERATOR_MODEL = "llama-3.1-70b-versatile"
MAX_FACTS = 5

SYSTEM_PROMPT = (
    "You are Wonder Whiz, an educational assistant that writes engaging, age-appropriate "
    "encyclopedia content for children.\n\n"
    "CRITICAL: You MUST respond with valid JSON only. No extra text before or after the JSON."
)

_BULLET = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*")


def age_guidance(child_age: int) -> str:
    if child_age <= 6:
        return (
            "Age Guidance (5-6 years):\n"
            "- Use very simple words and short sentences\n"
            "- Compare to things they know (toys, animals, family)\n"
            "- Use \"imagine if...\" scenarios\n"
            "- Keep paragraphs very short"
        )
    if child_age <= 9:
        return (
            "Age Guidance (7-9 years):\n"
            "- Use clear, straightforward language\n"
            "- Include fun comparisons and analogies\n"
            "- Add \"did you know?\" facts\n"
            "- Use some educational vocabulary but explain it"
        )
    if child_age <= 12:
        return (
            "Age Guidance (10-12 years):\n"
            "- Use more sophisticated vocabulary\n"
            "- Include scientific concepts explained simply\n"
            "- Add historical context where relevant\n"
            "- Encourage critical thinking"
        )
    return (
        "Age Guidance (13-16 years):\n"
        "- Use proper scientific/academic terminology\n"
        "- Include complex concepts and theories\n"
        "- Include current research and discoveries\n"
        "- Encourage deeper analysis and understanding"
    )


def build_content_prompt(topic_title: str, section_title: str, section_description: str, child_age: int) -> str:
    if child_age <= 8:
        register = "simple, fun language"
    elif child_age <= 12:
        register = "clear explanations with some technical terms"
    else:
        register = "detailed explanations with proper scientific/technical terminology"
    return "\n".join(
        [
            f'Create engaging encyclopedia content for "{section_title}" about "{topic_title}".',
            "",
            f"Section Description: {section_description or 'Exploring this fascinating topic'}",
            f"Target Age: {child_age} years old",
            age_guidance(child_age),
            "",
            "Requirements:",
            "- Write approximately 500 words of detailed, engaging content",
            f"- Include 3-{MAX_FACTS} amazing facts",
            f"- Use {register}",
            "- If the topic is complex, include a simple story or analogy to explain it",
            "",
            "Respond ONLY with valid JSON in this exact format:",
            '{"content": "...", "facts": ["..."], "story_mode_content": "optional", "word_count": 500}',
        ]
    )


def parse_generated_content(text: str) -> GeneratedContent:
    """Parse a model reply, tolerating prose around the JSON object."""

    cleaned = (text or "").strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        try:
            data = json.loads(cleaned[start : end + 1])
        except ValueError:
            data = None
        if isinstance(data, dict):
            return _from_mapping(data)

    lines = [line.strip() for line in cleaned.splitlines() if line.strip()]
    facts = [_BULLET.sub("", line).strip() for line in lines if _BULLET.match(line)][:MAX_FACTS]
    body = "\n".join(line for line in lines if not _BULLET.match(line))
    if not body:
        raise GenerationFailure("Generated reply contained no usable content.")
    return GeneratedContent(content=body, facts=tuple(facts), word_count=len(body.split()))


def _from_mapping(data: Mapping[str, Any]) -> GeneratedContent:
    content = data.get("content")
    if not isinstance(content, str) or not content.strip():
        raise GenerationFailure("Generated JSON has no content field.")
    raw_facts = data.get("facts") or []
    if not isinstance(raw_facts, list):
        raise GenerationFailure("Generated JSON facts must be a list.")
    story = data.get("story_mode_content")
    word_count = data.get("word_count")
    return GeneratedContent(
        content=content,
        facts=tuple(str(fact) for fact in raw_facts[:MAX_FACTS]),
        image_ref=data.get("image_url") or None,
        story_mode_content=story if isinstance(story, str) and story.strip() else None,
        word_count=word_count if isinstance(word_count, int) and word_count > 0 else len(content.split()),
    )


def _post_json(url: str, payload: Dict[str, Any], *, headers: Mapping[str, str], timeout: float) -> Dict[str, Any]:
    body = json.dumps(payload).encode("utf-8")
    request = URLRequest(url, data=body, headers={"Content-Type": "application/json", **headers}, method="POST")
    try:
        with urlopen(request, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except HTTPError as exc:
        raise GenerationFailure(f"Generator API error: {exc.code}") from exc
    except (URLError, TimeoutError, OSError) as exc:
        raise GenerationFailure(f"Generator unreachable: {exc}") from exc
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise GenerationFailure("Generator returned invalid JSON.") from exc
    if not isinstance(data, dict):
        raise GenerationFailure("Generator returned an unexpected payload.")
    return data


class HttpContentGenerator:
    """Call a chat-completions endpoint and parse section content from the reply."""

    def __init__(
        self,
        api_key: str,
        *,
        url: str = DEFAULT_GENERATOR_URL,
        model: str = DEFAULT_GENERATOR_MODEL,
        timeout: float = 20.0,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> None:
        self.api_key = api_key
        self.url = url
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_payload(
        self, section_title: str, section_description: str, topic_title: str, child_age: int
    ) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": build_content_prompt(topic_title, section_title, section_description, child_age),
                },
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    def generate(
        self,
        section_title: str,
        section_description: str,
        topic_title: str,
        child_age: int,
    ) -> GeneratedContent:
        if not self.api_key:
            raise GenerationFailure("No API key configured for the content generator.")
        data = _post_json(
            self.url,
            self.build_payload(section_title, section_description, topic_title, child_age),
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )
        try:
            reply = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationFailure("Generator reply had no message content.") from exc
        if not reply:
            raise GenerationFailure("No content generated.")
        return parse_generated_content(reply)


class HttpImageGenerator:
    """Request an illustration for a section and return its URL."""

    def __init__(self, url: str, *, api_key: Optional[str] = None, timeout: float = 30.0) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = timeout

    def generate_image(self, section_title: str, content_excerpt: str, child_age: int) -> str:
        headers: Dict[str, str] = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        data = _post_json(
            self.url,
            {"section_title": section_title, "section_content": content_excerpt, "child_age": child_age},
            headers=headers,
            timeout=self.timeout,
        )
        image_url = data.get("image_url")
        if not isinstance(image_url, str) or not image_url:
            raise GenerationFailure("Image generator returned no image_url.")
        return image_url


class StaticContentGenerator:
    """Generator that serves prepared payloads keyed by section title.

    Used for offline demos and tests; unknown titles raise
    :class:`GenerationFailure` so callers exercise the fallback path.
    """

    def __init__(self, payloads: Optional[Mapping[str, GeneratedContent]] = None) -> None:
        self._payloads: Dict[str, GeneratedContent] = dict(payloads or {})
        self.calls: List[str] = []

    def add(self, section_title: str, payload: GeneratedContent) -> None:
        self._payloads[section_title] = payload

    def generate(
        self,
        section_title: str,
        section_description: str,
        topic_title: str,
        child_age: int,
    ) -> GeneratedContent:
        self.calls.append(section_title)
        try:
            return self._payloads[section_title]
        except KeyError as exc:
            raise GenerationFailure(f"No prepared content for '{section_title}'.") from exc


__all__ = [
    "DEFAULT_GENERATOR_MODEL",
    "DEFAULT_GENERATOR_URL",
    "HttpContentGenerator",
    "HttpImageGenerator",
    "StaticContentGenerator",
    "age_guidance",
    "build_content_prompt",
    "parse_generated_content",
]
