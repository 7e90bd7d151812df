"""
Configuration settings for the Realty Photo Enhancement client
Loaded from environment variables (and a local .env file)
"""
import os
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()


class ProcessingStatus(str, Enum):
    """Lifecycle status of a queued image"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Preset(str, Enum):
    """Enhancement tiers known to this client"""
    STANDARD = "standard"
    PREMIUM = "premium"
    CRYSTAL = "crystal"


@dataclass(frozen=True)
class PresetInfo:
    """Display and pricing row for one preset"""
    name: str
    description: str
    credits: int
    badge: Optional[str] = None


def _default_presets() -> Dict[str, PresetInfo]:
    return {
        Preset.STANDARD.value: PresetInfo(
            name="Standard",
            description="Clear colors and sharpness",
            credits=1,
        ),
        Preset.PREMIUM.value: PresetInfo(
            name="Premium",
            description="Strong HDR, vivid colors",
            credits=2,
            badge="Popular",
        ),
        Preset.CRYSTAL.value: PresetInfo(
            name="Crystal Clear",
            description="Maximum effect, magazine quality",
            credits=2,
            badge="Pro",
        ),
    }


@dataclass
class PresetConfig:
    """Preset table. The set of tiers is configuration, not structure."""
    presets: Dict[str, PresetInfo] = field(default_factory=_default_presets)
    default_preset: str = field(
        default_factory=lambda: os.getenv("DEFAULT_PRESET", Preset.STANDARD.value)
    )


@dataclass
class StrengthRange:
    """Bounds for the enhancement intensity (percent)"""
    minimum: int = 50
    maximum: int = 150
    default: int = 100

    def contains(self, value: float) -> bool:
        return self.minimum <= value <= self.maximum


@dataclass
class EnhanceAPIConfig:
    """Remote enhancement endpoint configuration"""
    base_url: str = field(
        default_factory=lambda: os.getenv("ENHANCE_API_URL", "http://localhost:3000")
    )
    enhance_path: str = "/api/enhance"
    credits_path: str = "/api/credits"

    # Image processing upstream can be slow
    timeout: float = field(
        default_factory=lambda: float(os.getenv("ENHANCE_TIMEOUT", "120"))
    )

    # Session cookie issued by the site's auth layer
    session_cookie: str = field(
        default_factory=lambda: os.getenv("ENHANCE_SESSION_COOKIE", "authjs.session-token")
    )
    session_token: str = field(
        default_factory=lambda: os.getenv("ENHANCE_SESSION_TOKEN", "")
    )

    @property
    def enhance_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.enhance_path}"

    @property
    def credits_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.credits_path}"

    @property
    def cookies(self) -> Dict[str, str]:
        if self.session_token:
            return {self.session_cookie: self.session_token}
        return {}


@dataclass
class UploaderConfig:
    """Active set (uploader) configuration"""
    max_images: int = field(
        default_factory=lambda: int(os.getenv("MAX_IMAGES", "20"))
    )
    preview_size: int = 256
    preview_dir: Optional[Path] = field(
        default_factory=lambda: Path(os.environ["PREVIEW_DIR"]) if os.getenv("PREVIEW_DIR") else None
    )
    allowed_extensions: tuple = (".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tiff", ".heic")


@dataclass
class Config:
    """Main configuration class"""
    presets: PresetConfig = field(default_factory=PresetConfig)
    strength: StrengthRange = field(default_factory=StrengthRange)
    api: EnhanceAPIConfig = field(default_factory=EnhanceAPIConfig)
    uploader: UploaderConfig = field(default_factory=UploaderConfig)

    log_level: str = "INFO"
    log_to_file: bool = False

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_to_file=os.getenv("LOG_TO_FILE", "false").lower() == "true",
        )


# Global config instance
_config = None


def get_config() -> Config:
    """Get the global config instance"""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config(config: Optional[Config] = None) -> None:
    """Replace (or drop) the global config instance"""
    global _config
    _config = config
