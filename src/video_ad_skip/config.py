"""
Settings for detection runs.

Values come from the environment (VIDEO_AD_SKIP_*), after loading a .env file
from the project root if present. API keys stay in their usual variables
(ANTHROPIC_API_KEY, DEEPGRAM_API_KEY) and are read by the clients themselves.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

ENV_PREFIX = "VIDEO_AD_SKIP_"
DEFAULT_CACHE_PATH = Path.home() / ".cache" / "video-ad-skip" / "cache.json"
DEFAULT_MODEL = "claude-haiku-4-5-20251001"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def load_env(env_path: Path | None = None) -> None:
    """Load .env file from project root if it exists."""
    if env_path is None:
        env_path = Path(__file__).resolve().parent.parent.parent / ".env"
    if env_path.exists():
        for line in env_path.read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, _, value = line.partition("=")
                os.environ.setdefault(key.strip(), value.strip().strip("\"'"))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{ENV_PREFIX}{name} must be a boolean, got {raw!r}")


@dataclass
class Settings:
    # Everything off means no detection at all
    enabled: bool = True
    auto_skip: bool = False
    # Only ask the model when the pinned comment links to a shop
    restricted_mode: bool = False
    audio_transcription: bool = False
    whitelist: set[str] = field(default_factory=set)
    cache_path: Path = DEFAULT_CACHE_PATH
    model: str = DEFAULT_MODEL

    @staticmethod
    def from_env() -> "Settings":
        whitelist_raw = os.environ.get(ENV_PREFIX + "WHITELIST", "")
        cache_path = os.environ.get(ENV_PREFIX + "CACHE_PATH")
        return Settings(
            enabled=_env_bool("ENABLED", True),
            auto_skip=_env_bool("AUTO_SKIP", False),
            restricted_mode=_env_bool("RESTRICTED_MODE", False),
            audio_transcription=_env_bool("AUDIO_TRANSCRIPTION", False),
            whitelist={w.strip() for w in whitelist_raw.split(",") if w.strip()},
            cache_path=Path(cache_path).expanduser() if cache_path else DEFAULT_CACHE_PATH,
            model=os.environ.get(ENV_PREFIX + "MODEL") or DEFAULT_MODEL,
        )


class SettingsWhitelist:
    """Whitelist of channel/uploader ids taken from Settings."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def is_whitelisted(self, owner_id: str) -> bool:
        return str(owner_id) in self.settings.whitelist
