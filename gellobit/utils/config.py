from __future__ import annotations
import os
import yaml
from functools import lru_cache

CONFIG_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "configs")
SETTINGS_PATH = os.path.join(CONFIG_DIR, "settings.yml")
PROMPTS_PATH = os.path.join(CONFIG_DIR, "prompts.yml")


def _load_yaml(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@lru_cache(maxsize=1)
def load_default_settings(path: str | None = None) -> dict:
    return _load_yaml(path or SETTINGS_PATH)


@lru_cache(maxsize=1)
def load_prompts(path: str | None = None) -> dict:
    data = _load_yaml(path or PROMPTS_PATH)
    data.setdefault("version", 1)
    for key in ("system", "validation", "response_format"):
        if not isinstance(data.get(key), str) or not data[key].strip():
            raise ValueError(f"prompts.yml has wrong data type or is missing a non-empty '{key}' field.")
    data.setdefault("categories", {})
    return data


def default_setting(key: str):
    """Look up a dotted key ('cleanup.days_after_deadline') in the YAML defaults."""
    node = load_default_settings()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node
