from __future__ import annotations
import logging
from datetime import date
from typing import Optional, Tuple

from gellobit.utils.config import load_prompts

logger = logging.getLogger(__name__)


def build_content_digest(title: str, body: str, url: str, max_chars: int = 6000) -> str:
    """Shared digest every category prompt is built from."""
    body = (body or "").strip()
    budget = max(200, max_chars - len(title) - len(url) - 40)
    if len(body) > budget:
        body = body[:budget] + "…"
    return f"TITLE: {title.strip()}\nSOURCE URL: {url.strip()}\n\nCONTENT:\n{body}"


def _category(kind: str) -> dict:
    prompts = load_prompts()
    if kind == "blog_post":
        return prompts.get("blog_post") or prompts["generic"]
    return (prompts.get("categories") or {}).get(kind) or prompts["generic"]


def build_prompt(kind: str, digest: str, override: Optional[str] = None) -> Tuple[str, str]:
    """Return (system_prompt, user_prompt) for an opportunity type or 'blog_post'.

    An operator override replaces the category instructions but keeps the
    response format, since the gate depends on it.
    """
    prompts = load_prompts()
    category = _category(kind)
    label = category.get("label", kind.replace("_", " "))

    if override and override.strip():
        instructions = override.strip()
    else:
        instructions = prompts["validation"].format(label=label).strip()
        instructions += f"\nFocus on {category.get('focus', 'the essential details.')}"

    response_format = prompts["response_format"].format(label=label).strip()
    user_prompt = f"""
Today's date: {date.today().isoformat()}
Category: {label}

{instructions}

{response_format}

SOURCE:
\"\"\"
{digest}
\"\"\"
""".strip()
    logger.debug("Prompt size est: %d tokens for %s", max(1, len(user_prompt) // 4), kind)
    return prompts["system"].strip(), user_prompt
