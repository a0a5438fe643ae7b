import re
import unicodedata
from typing import Optional

from bs4 import BeautifulSoup

_WS = re.compile(r"\s+")
_FENCE = re.compile(r"```[a-zA-Z]*\s*([\s\S]*?)\s*```")
_LEADING_H1 = re.compile(r"^\s*<h1[^>]*>[\s\S]*?</h1>\s*", re.IGNORECASE)


def clean_whitespace(text: str) -> str:
    return _WS.sub(" ", text or "").strip()


def strip_html(html: str) -> str:
    if not html:
        return ""
    if "<" not in html:
        return clean_whitespace(html)
    return clean_whitespace(BeautifulSoup(html, "html.parser").get_text(" "))


def first_image_src(html: str) -> Optional[str]:
    if not html or "<img" not in html.lower():
        return None
    img = BeautifulSoup(html, "html.parser").find("img", src=True)
    return img["src"].strip() if img else None


def truncate_chars(text: str, limit: int, suffix: str = "...") -> str:
    """Cut on a word boundary so the result (suffix included) fits in limit."""
    text = clean_whitespace(text)
    if len(text) <= limit:
        return text
    cut = text[: max(0, limit - len(suffix))]
    if " " in cut:
        cut = cut[: cut.rfind(" ")]
    return cut.rstrip(" ,;:-") + suffix


def truncate_words(text: str, max_words: int, suffix: str = "...") -> str:
    words = clean_whitespace(text).split(" ")
    if len(words) <= max_words:
        return " ".join(words)
    return " ".join(words[:max_words]).rstrip(" ,;:-") + suffix


def clip_title(title: str, limit: int) -> str:
    title = strip_html(title).strip(" \"'")
    if len(title) <= limit:
        return title
    cut = title[:limit]
    if " " in cut:
        cut = cut[: cut.rfind(" ")]
    return cut.rstrip(" ,;:-")


def sanitize_generated_html(html: str) -> str:
    """Remove markdown fences and a leading <h1>; the page template renders the title."""
    if not html:
        return ""
    html = _FENCE.sub(lambda m: m.group(1), html)
    html = _LEADING_H1.sub("", html, count=1)
    return html.strip()


def slugify(value: str, max_length: int = 80) -> str:
    value = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9\s-]", "", value).strip().lower()
    value = re.sub(r"[\s_-]+", "-", value).strip("-")
    if len(value) > max_length:
        value = value[:max_length].rsplit("-", 1)[0] or value[:max_length]
    return value or "opportunity"
