"""
AI-assisted tags and titles.

Both calls are best effort: any failure, empty answer or missing API key
yields a deterministic fallback, so callers never see an error from here.
"""

import json
import re
import structlog
from typing import List, Optional, Protocol, Sequence

import httpx
from openai import OpenAI

from remixrite import config

logger = structlog.get_logger()

MAX_TAGS = 8

LIST_MARKER = re.compile(r"^\s*(\d+[.)]|[-*])\s*")
STOPWORDS = {"the", "and", "for", "with", "from", "into", "remix", "of", "a", "an"}

class TagGenerator(Protocol):
    def generate_tags(self, title: str, description: str, kind: str) -> List[str]: ...
    def generate_title(self, original_titles: Sequence[str], style: Optional[str], mood: Optional[str]) -> List[str]: ...

def fallback_tags(title: str, description: str, kind: str) -> List[str]:
    """Kind, 'remix', then distinct words from the title and description."""
    tags = [kind or "media", "remix"]
    for word in re.findall(r"[a-z0-9]+", f"{title} {description}".lower()):
        if len(word) > 2 and word not in STOPWORDS and word not in tags:
            tags.append(word)
        if len(tags) >= MAX_TAGS:
            break
    return tags

def fallback_titles(original_titles: Sequence[str], style: Optional[str], mood: Optional[str]) -> List[str]:
    base = original_titles[0] if original_titles else "Untitled"
    titles = [f"Remix of {base}"]
    if style or mood:
        descriptor = " ".join(part for part in (mood, style) if part)
        titles.append(f"{base} ({descriptor} remix)")
    return titles

def _parse_list(content: str) -> List[str]:
    """Accept a JSON array or a comma/newline separated list."""
    content = content.strip()
    match = re.search(r"\[.*\]", content, re.DOTALL)
    if match:
        try:
            items = json.loads(match.group(0))
            return [str(item).strip() for item in items if str(item).strip()]
        except json.JSONDecodeError:
            pass
    parts = (LIST_MARKER.sub("", part).strip().strip("\"'") for part in re.split(r"[,\n]", content))
    return [part for part in parts if part]

class OpenAITagGenerator:
    """Chat-completion backed tagger (OpenRouter-compatible endpoint)."""

    def __init__(self, api_key: str = config.OPENAI_API_KEY, base_url: str = config.OPENAI_BASE_URL,
                 model: str = config.OPENAI_MODEL, timeout: float = config.TAGGER_TIMEOUT_SECONDS,
                 client: Optional[OpenAI] = None):
        self.model = model
        self.client = client
        if self.client is None and api_key:
            self.client = OpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=httpx.Timeout(timeout, connect=5.0),
                max_retries=0,
            )
        if self.client is None:
            logger.warning("OpenAI API key not configured, tags and titles will use fallbacks")

    @property
    def available(self) -> bool:
        return self.client is not None

    def _complete(self, system: str, prompt: str) -> List[str]:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            max_tokens=300,
        )
        if not response.choices:
            return []
        return _parse_list(response.choices[0].message.content or "")

    def generate_tags(self, title: str, description: str, kind: str) -> List[str]:
        if not self.available:
            return fallback_tags(title, description, kind)
        try:
            tags = self._complete(
                "You tag audio and video content for a remix platform. "
                "Answer with a JSON array of short lowercase tags only.",
                f"Title: {title}\nDescription: {description}\nType: {kind}\n"
                f"Give up to {MAX_TAGS} descriptive tags.",
            )
        except Exception as e:
            logger.warning("Tag generation failed, using fallback", error=str(e))
            return fallback_tags(title, description, kind)

        tags = [tag.lower() for tag in tags][:MAX_TAGS]
        return tags or fallback_tags(title, description, kind)

    def generate_title(self, original_titles: Sequence[str], style: Optional[str], mood: Optional[str]) -> List[str]:
        if not self.available:
            return fallback_titles(original_titles, style, mood)
        try:
            titles = self._complete(
                "You name remixes for a remix platform. Answer with a JSON array of titles only.",
                f"Original clips: {', '.join(original_titles)}\n"
                f"Style: {style or 'any'}\nMood: {mood or 'any'}\n"
                "Suggest 3 catchy remix titles.",
            )
        except Exception as e:
            logger.warning("Title generation failed, using fallback", error=str(e))
            return fallback_titles(original_titles, style, mood)

        return titles or fallback_titles(original_titles, style, mood)
