from __future__ import annotations
import logging
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.orm import Session

from gellobit.db.models import SystemSetting
from gellobit.utils.config import default_setting, load_default_settings

logger = logging.getLogger(__name__)


def _flatten(node: dict, prefix: str = "") -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in node.items():
        dotted = f"{prefix}{key}"
        # max_age_by_type is a single setting whose value is a mapping
        if isinstance(value, dict) and dotted.count(".") < 1:
            out.update(_flatten(value, dotted + "."))
        else:
            out[dotted] = value
    return out


class Settings:
    """Read-only view over YAML defaults overlaid with system_settings rows."""

    def __init__(self, values: Dict[str, Any]):
        self._values = values

    def get(self, key: str, default: Any = None) -> Any:
        value = self._values.get(key)
        return default if value is None else value


def load_settings(db: Session) -> Settings:
    values = _flatten(load_default_settings())
    for row in db.execute(select(SystemSetting)).scalars():
        values[row.key] = row.value
    return Settings(values)


def get_setting(db: Session, key: str, default: Any = None) -> Any:
    row = db.get(SystemSetting, key)
    if row is not None and row.value is not None:
        return row.value
    value = default_setting(key)
    return default if value is None else value


def set_settings(db: Session, values: Dict[str, Any]) -> bool:
    for key, value in values.items():
        row = db.get(SystemSetting, key)
        if row is None:
            db.add(SystemSetting(key=key, value=value))
        else:
            row.value = value
    db.flush()
    logger.info("Updated settings: %s", ", ".join(sorted(values)))
    return True
