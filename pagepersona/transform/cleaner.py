"""
Text cleaning before the model call: strip non-content HTML, boilerplate, links
and excess whitespace, then truncate keeping the start and the end of the text.
"""
import logging
import re
from dataclasses import dataclass
from html import unescape
from html.parser import HTMLParser
from typing import List

logger = logging.getLogger(__name__)

HTML_RE = re.compile(r"<[a-z][\s\S]*>", re.IGNORECASE)
URL_RE = re.compile(r"(https?://\S+|www\.\S+)", re.IGNORECASE)
EMAIL_RE = re.compile(r"\S+@\S+\.\S+")

SKIP_TAGS = {
    "script", "style", "noscript", "iframe", "object", "embed", "svg",
    "nav", "header", "footer", "aside", "form", "template",
}
VOID_TAGS = {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
BLOCK_TAGS = {"p", "div", "section", "article", "li", "ul", "ol", "h1", "h2", "h3", "h4", "h5", "h6", "br", "tr", "blockquote", "pre"}
NOISE_ATTR_RE = re.compile(r"cookie|banner|popup|modal|overlay|advert|\bads?\b|social-shar|newsletter|subscription|related|recommended", re.IGNORECASE)

BOILERPLATE_PATTERNS = [
    re.compile(r"\b(cookie|cookies|cookie policy|cookie notice|cookie consent)\b[^\n.!?]{0,100}[.!?]", re.IGNORECASE),
    re.compile(r"\b(privacy policy|terms of service|terms and conditions|legal notice)\b[^\n.!?]{0,100}[.!?]", re.IGNORECASE),
    re.compile(r"\b(subscribe|newsletter|sign up for|join our|follow us)\b[^\n.!?]{0,100}[.!?]", re.IGNORECASE),
    re.compile(r"\b(advertisement|sponsored content|ad choice|advertisements)\b[^\n.!?]{0,100}[.!?]", re.IGNORECASE),
    re.compile(r"\b(all rights reserved|copyright \d{4})\b[^\n]{0,100}", re.IGNORECASE),
]


@dataclass
class CleanedText:
    text: str
    original_length: int
    was_truncated: bool

    @property
    def cleaned_length(self) -> int:
        return len(self.text)

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens(self.text)


class _ContentExtractor(HTMLParser):
    """Collects visible text, skipping non-content elements and anything whose class/id looks like chrome."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.parts: List[str] = []
        self._skip_stack: List[str] = []

    def handle_starttag(self, tag, attrs):
        if tag in VOID_TAGS:
            if tag == "br":
                self.parts.append("\n")
            return
        if self._skip_stack:
            self._skip_stack.append(tag)
            return
        marker = " ".join(v or "" for k, v in attrs if k in ("class", "id"))
        if tag in SKIP_TAGS or (marker and NOISE_ATTR_RE.search(marker)):
            self._skip_stack.append(tag)
            return
        if tag in BLOCK_TAGS:
            self.parts.append("\n")

    def handle_endtag(self, tag):
        if self._skip_stack:
            if tag in self._skip_stack:
                while self._skip_stack and self._skip_stack.pop() != tag:
                    pass
            return
        if tag in BLOCK_TAGS:
            self.parts.append("\n")

    def handle_data(self, data):
        if not self._skip_stack:
            self.parts.append(data)


def looks_like_html(text: str) -> bool:
    return bool(HTML_RE.search(text or ""))


def extract_text_from_html(html: str) -> str:
    parser = _ContentExtractor()
    parser.feed(html)
    parser.close()
    return "".join(parser.parts)


def estimate_tokens(text: str) -> int:
    # ~4 characters per token for English prose
    return (len(text or "") + 3) // 4


def normalize(text: str) -> str:
    text = unescape(text)
    text = URL_RE.sub("", text)
    text = EMAIL_RE.sub("", text)
    for pattern in BOILERPLATE_PATTERNS:
        text = pattern.sub("", text)
    lines = [" ".join(line.split()) for line in text.splitlines()]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def smart_truncate(text: str, max_chars: int, preserve_start_ratio: float = 0.8) -> str:
    """Keep the first preserve_start_ratio of the budget and the tail for the rest, joined by an ellipsis marker."""
    if len(text) <= max_chars:
        return text
    marker = "\n\n[...]\n\n"
    budget = max(0, max_chars - len(marker))
    head = int(budget * preserve_start_ratio)
    tail = budget - head
    return text[:head].rstrip() + marker + (text[-tail:].lstrip() if tail else "")


def clean_text_for_llm(raw: str, *, max_chars: int = 45000, preserve_start_ratio: float = 0.8) -> CleanedText:
    """Turn raw HTML or plain text into model-ready text within max_chars. Logs size and token reduction."""
    original_length = len(raw or "")
    text = extract_text_from_html(raw) if looks_like_html(raw) else (raw or "")
    text = normalize(text)
    truncated = len(text) > max_chars
    if truncated:
        text = smart_truncate(text, max_chars, preserve_start_ratio)

    logger.info(
        "text_cleaned",
        extra={
            "original_length": original_length,
            "cleaned_length": len(text),
            "estimated_tokens": estimate_tokens(text),
            "was_truncated": truncated,
        },
    )
    return CleanedText(text=text, original_length=original_length, was_truncated=truncated)
