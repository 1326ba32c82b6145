"""
Ad detection via Claude.

Sends the video title, pinned comment and numbered captions to Claude Haiku
and returns the raw reply. The reply is untrusted text: callers must run it
through sanitizer.parse_ad_result().
"""

import json
from typing import Any, Protocol

import anthropic

from .config import DEFAULT_MODEL


class AIProvider(Protocol):
    def detect(self, payload: dict[str, Any]) -> str: ...

    def extract_product_name(self, ad_text: str) -> str: ...


_DETECT_PROMPT = """\
You are checking a video for embedded advertisements (sponsor reads, product
placements, discount codes, calls to action for a sponsor's product).

## Video title
{title}

## Pinned comment
{top_comment}

## Links in the pinned comment
{links}
{goods_hint}
## Captions (index: text)
{captions}

Respond with ONLY valid JSON, no other text:
{{"exist": true or false, "good_name": ["advertised product", ...], "index_lists": [[first_index, last_index], ...]}}

- index_lists holds caption index ranges (inclusive) covering each ad.
- If there is no advertisement, return {{"exist": false, "good_name": [], "index_lists": []}}."""

_GOODS_HINT = """
## Products already found in the pinned comment
{names}
Focus on where these products are promoted in the captions.
"""

_PRODUCT_PROMPT = """\
The following text is a pinned comment and link title from a video that links
to a shop. Reply with ONLY the name of the product being sold, nothing else.

{text}"""


def format_captions(captions: dict[int, str]) -> str:
    return "\n".join(f"{i}: {text}" for i, text in sorted(captions.items()))


def build_detect_prompt(payload: dict[str, Any]) -> str:
    links = payload.get("link_messages") or {}
    names = payload.get("good_names") or []
    return _DETECT_PROMPT.format(
        title=payload.get("title") or "N/A",
        top_comment=payload.get("top_comment") or "N/A",
        links=json.dumps(links, ensure_ascii=False, indent=2) if links else "N/A",
        goods_hint=_GOODS_HINT.format(names="\n".join(f"- {n}" for n in names)) if names else "",
        captions=format_captions(payload.get("captions") or {}),
    )


class AnthropicAdDetector:
    def __init__(self, model: str = DEFAULT_MODEL, api_key: str | None = None) -> None:
        self.model = model
        self.client = anthropic.Anthropic(api_key=api_key) if api_key else anthropic.Anthropic()

    def _ask(self, prompt: str, max_tokens: int) -> str:
        msg = self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(block.text for block in msg.content if getattr(block, "type", "") == "text")

    def detect(self, payload: dict[str, Any]) -> str:
        return self._ask(build_detect_prompt(payload), max_tokens=1024)

    def extract_product_name(self, ad_text: str) -> str:
        return self._ask(_PRODUCT_PROMPT.format(text=ad_text), max_tokens=64).strip()
