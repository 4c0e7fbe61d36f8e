"""Settings for the watermark tool.

Defaults live here as module constants; environment variables override them and
a small JSON file in the user's home keeps the last chosen preferences.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from app_logging import get_logger
from export_coordinator import FailurePolicy
from image_registry import DEFAULT_NOISE_TOKENS
from watermark_compositor import DecodeError, WatermarkConfig, WatermarkMode

logger = get_logger("config")

# ---------------------------- Configuration ---------------------------- #
APP_STORAGE_DIR = Path.home() / ".alv_watermark"
LAST_STATE_FILE = APP_STORAGE_DIR / "last_state.json"
ASSETS_DIR = Path(__file__).resolve().parent / "assets"
DEFAULT_LOGO_PATH = ASSETS_DIR / "logo.png"
DEFAULT_MODE = WatermarkMode.CENTERED
UI_SETTLE_DELAY = 1.0  # seconds a download button stays busy after an export


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


def _env_path(name: str) -> Optional[Path]:
    raw = (os.getenv(name) or "").strip()
    return Path(raw).expanduser() if raw else None


@dataclass
class AppSettings:
    logo_path: Optional[Path] = DEFAULT_LOGO_PATH
    center_logo_path: Optional[Path] = None
    mode: WatermarkMode = DEFAULT_MODE
    noise_tokens: Tuple[str, ...] = DEFAULT_NOISE_TOKENS
    failure_policy: FailurePolicy = FailurePolicy.SKIP
    exclusive_exports: bool = True
    settle_delay: float = UI_SETTLE_DELAY

    @classmethod
    def from_env(cls) -> "AppSettings":
        settings = cls()
        settings.logo_path = _env_path("ALV_WATERMARK_LOGO") or DEFAULT_LOGO_PATH
        settings.center_logo_path = _env_path("ALV_WATERMARK_CENTER_LOGO")
        mode = (os.getenv("ALV_WATERMARK_MODE") or "").strip().lower()
        if mode:
            try:
                settings.mode = WatermarkMode(mode)
            except ValueError:
                logger.warning("unknown ALV_WATERMARK_MODE %r, using %s", mode, DEFAULT_MODE.value)
        tokens = os.getenv("ALV_NOISE_TOKENS")
        if tokens is not None:
            settings.noise_tokens = tuple(t.strip() for t in tokens.split(",") if t.strip())
        policy = (os.getenv("ALV_FAILURE_POLICY") or "").strip().lower()
        if policy:
            try:
                settings.failure_policy = FailurePolicy(policy)
            except ValueError:
                logger.warning("unknown ALV_FAILURE_POLICY %r, using skip", policy)
        settings.exclusive_exports = _env_flag("ALV_EXCLUSIVE_EXPORTS", True)
        delay = (os.getenv("ALV_SETTLE_DELAY") or "").strip()
        if delay:
            try:
                settings.settle_delay = max(0.0, float(delay))
            except ValueError:
                logger.warning("invalid ALV_SETTLE_DELAY %r ignored", delay)
        return settings

    def watermark_config(
        self,
        mode: Optional[WatermarkMode] = None,
        logo: Optional[bytes] = None,
        centered_logo: Optional[bytes] = None,
    ) -> WatermarkConfig:
        """Build the watermark config, reading the logo files unless bytes are given."""
        return WatermarkConfig(
            mode=WatermarkMode(mode or self.mode),
            logo=logo if logo is not None else read_asset(self.logo_path),
            centered_logo=(
                centered_logo if centered_logo is not None else read_asset(self.center_logo_path)
            ),
        )


def read_asset(path: Optional[Path]) -> Optional[bytes]:
    if path is None:
        return None
    try:
        return Path(path).read_bytes()
    except OSError as e:
        logger.warning("watermark asset %s unreadable: %s", path, e)
        return None


def require_asset(path: Path) -> bytes:
    data = read_asset(path)
    if data is None:
        raise DecodeError(f"watermark asset not found: {path}")
    return data


# ---------------------------- Preference Persistence ---------------------------- #
def ensure_storage_dir() -> None:
    APP_STORAGE_DIR.mkdir(exist_ok=True, parents=True)


def load_last_state(path: Optional[Path] = None) -> Dict:
    path = path or LAST_STATE_FILE
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("ignoring unreadable preferences %s: %s", path, e)
            return {}
        return data if isinstance(data, dict) else {}
    return {}


def save_last_state(state: Dict, path: Optional[Path] = None) -> None:
    if path is None:
        ensure_storage_dir()
        path = LAST_STATE_FILE
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(state, indent=2), encoding="utf-8")


def apply_last_state(settings: AppSettings, state: Dict) -> AppSettings:
    """Overlay saved preferences (mode, failure policy) on ``settings``."""
    try:
        if "mode" in state:
            settings.mode = WatermarkMode(state["mode"])
        if "failure_policy" in state:
            settings.failure_policy = FailurePolicy(state["failure_policy"])
    except ValueError as e:
        logger.warning("ignoring invalid saved preference: %s", e)
    return settings
