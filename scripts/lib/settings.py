"""
Runtime settings for Cloudinha Analytics.
Environment-driven constants plus the YAML analytics policy.

Usage:
    from scripts.lib.settings import PAGE_SIZE, UTC_OFFSET_HOURS, load_policy_config

    config = load_policy_config()
    gap = config["sessions"]["gap_minutes"]
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from scripts.lib.errors import ConfigError
from scripts.lib.logger import setup_logger

logger = setup_logger("settings")

# Load .env from project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(PROJECT_ROOT / ".env")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


# PostgREST caps every response at 1000 rows
PAGE_SIZE = _env_int("ANALYTICS_PAGE_SIZE", 1000)
UTC_OFFSET_HOURS = _env_int("ANALYTICS_UTC_OFFSET_HOURS", -3)
WINDOW_DAYS = _env_int("ANALYTICS_WINDOW_DAYS", 7)

INSIGHT_CACHE_TTL_HOURS = _env_int("INSIGHT_CACHE_TTL_HOURS", 24)
INSIGHT_COOLDOWN_MINUTES = _env_int("INSIGHT_COOLDOWN_MINUTES", 5)

POLICY_PATH = Path(
    os.environ.get("ANALYTICS_POLICY_PATH", "")
    or PROJECT_ROOT / "configs" / "analytics_policy.yaml"
)

REQUIRED_SECTIONS = ("sessions", "funnel", "focus_region")


def load_policy_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load the analytics policy YAML.

    Args:
        path: Override path (default: POLICY_PATH).

    Returns:
        Parsed policy dict with version, sessions, funnel, focus_region.

    Raises:
        ConfigError: If the file is missing, unparsable or incomplete.
    """
    config_path = Path(path) if path else POLICY_PATH
    if not config_path.exists():
        raise ConfigError("Analytics policy not found", config_path=str(config_path))

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}", config_path=str(config_path))

    if not isinstance(data, dict):
        raise ConfigError("Policy must be a mapping", config_path=str(config_path))

    missing = [s for s in REQUIRED_SECTIONS if s not in data]
    if missing:
        raise ConfigError(
            f"Policy is missing sections: {', '.join(missing)}",
            config_path=str(config_path),
        )

    logger.debug("Loaded analytics policy v%s from %s", data.get("version"), config_path.name)
    return data
