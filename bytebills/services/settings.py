from __future__ import annotations
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

log = logging.getLogger(__name__)

# --- Base paths ---
ROOT_DIR = Path(__file__).resolve().parents[2]
DATA_DIR = ROOT_DIR / "data"
EXPORTS_DIR = ROOT_DIR / "exports"

# env var -> settings field
ENV_OVERRIDES = {
    "BYTEBILLS_DATA_DIR": "data_dir",
    "BYTEBILLS_DOWNLOAD_DIR": "download_dir",
    "BYTEBILLS_DEFAULT_CURRENCY": "default_currency",
    "BYTEBILLS_TAX_RATE": "default_tax_rate",
    "BYTEBILLS_STORE_TIMEOUT": "store_timeout",
    "BYTEBILLS_LOG_LEVEL": "log_level",
}


class AppSettings(BaseModel):
    data_dir: Path = DATA_DIR
    download_dir: Path = EXPORTS_DIR
    default_currency: str = "USD"
    default_tax_rate: float = Field(default=10.0, ge=0, le=100)
    store_timeout: float = Field(default=10.0, gt=0)  # seconds, per store call
    brand_name: str = "ByteBills"
    log_level: str = "INFO"


# ---------- Utils JSON ----------
def _load_json(path: os.PathLike | str) -> Optional[Any]:
    p = Path(path)
    if not p.exists():
        return None
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        log.warning("Ignoring unreadable settings file %s (%s)", p, e)
        return None


def load_settings(data_dir: os.PathLike | str | None = None, env: Optional[Dict[str, str]] = None) -> AppSettings:
    """
    Resolve settings in order:
    - defaults
    - <data_dir>/settings.json
    - BYTEBILLS_* environment variables
    """
    env = os.environ if env is None else env
    base = Path(data_dir or env.get("BYTEBILLS_DATA_DIR") or DATA_DIR)

    raw: Dict[str, Any] = {"data_dir": base}
    s = _load_json(base / "settings.json")
    if isinstance(s, dict):
        raw.update({k: v for k, v in s.items() if k in AppSettings.model_fields})

    for env_key, field in ENV_OVERRIDES.items():
        val = env.get(env_key)
        if val:
            raw[field] = val

    try:
        return AppSettings(**raw)
    except ValidationError as e:
        log.warning("Invalid settings, falling back to defaults: %s", e)
        return AppSettings(data_dir=base)


def configure_logging(level: str | int = "INFO") -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
