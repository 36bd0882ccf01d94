"""
Configuration management for the console session layer.

Values come from a JSON config file when one is given, with HMS_* environment
variables as defaults.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def get_int_env(name: str, default: int) -> int:
    """Get an integer from environment variable, with fallback to default."""
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


DEFAULT_API_URL = "https://hmsapi.martomor.xyz/api"

# Access credentials live 15 minutes; renew at the 14-minute mark
RENEW_INTERVAL = 14 * 60  # seconds
CREDENTIAL_LIFETIME = 15 * 60  # seconds


def get_state_dir() -> Path:
    """Get the directory holding the stored identity and cookies."""
    state_dir = os.environ.get("HMS_STATE_DIR")
    if state_dir:
        return Path(state_dir)
    return Path(os.path.expanduser("~")) / ".hostel-session"


def normalize_api_url(url: str) -> str:
    """Normalize an API base URL: add a scheme if missing, drop trailing slash."""
    url = url.strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


@dataclass
class SessionConfig:
    """Session layer configuration."""
    api_url: str = DEFAULT_API_URL
    renew_interval: int = RENEW_INTERVAL
    # 0 keeps the historical behavior: a renewal call may hang forever
    renewal_timeout: int = 0
    request_timeout: int = 30
    state_dir: Path = field(default_factory=get_state_dir)
    # None keeps DEFAULT_RULES; an empty mapping disables degraded resources
    degraded_resources: Optional[dict[str, str]] = None

    def __post_init__(self):
        if self.renew_interval >= CREDENTIAL_LIFETIME:
            raise ValueError(
                f"renew_interval ({self.renew_interval}s) must be shorter than "
                f"the credential lifetime ({CREDENTIAL_LIFETIME}s)"
            )
        if self.renew_interval <= 0:
            raise ValueError("renew_interval must be positive")

    @property
    def identity_path(self) -> Path:
        return Path(self.state_dir) / "session.json"

    @property
    def cookie_path(self) -> Path:
        return Path(self.state_dir) / "cookies.pickle"

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        d = {
            "api_url": self.api_url,
            "renew_interval": self.renew_interval,
            "renewal_timeout": self.renewal_timeout,
            "request_timeout": self.request_timeout,
            "state_dir": str(self.state_dir),
        }
        if self.degraded_resources is not None:
            d["degraded_resources"] = dict(self.degraded_resources)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "SessionConfig":
        """Create config from dictionary, using environment values as defaults."""
        defaults = cls.from_env()
        return cls(
            api_url=normalize_api_url(data.get("api_url", defaults.api_url)),
            renew_interval=int(data.get("renew_interval", defaults.renew_interval)),
            renewal_timeout=int(data.get("renewal_timeout", defaults.renewal_timeout)),
            request_timeout=int(data.get("request_timeout", defaults.request_timeout)),
            state_dir=Path(data.get("state_dir", defaults.state_dir)),
            degraded_resources=_degraded_resources(data.get("degraded_resources")),
        )

    @classmethod
    def from_env(cls) -> "SessionConfig":
        """Create config from HMS_* environment variables."""
        return cls(
            api_url=normalize_api_url(os.environ.get("HMS_API_URL", DEFAULT_API_URL)),
            renew_interval=get_int_env("HMS_RENEW_INTERVAL", RENEW_INTERVAL),
            renewal_timeout=get_int_env("HMS_RENEWAL_TIMEOUT", 0),
            request_timeout=get_int_env("HMS_REQUEST_TIMEOUT", 30),
            state_dir=get_state_dir(),
        )

    def save(self, path: Path) -> None:
        """Save configuration to file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "SessionConfig":
        """Load configuration from file, or from the environment if not found."""
        if path is not None and path.exists():
            try:
                with open(path) as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return cls.from_dict(data)
            except (json.JSONDecodeError, IOError):
                # Fall back to defaults if config is corrupted
                pass
        return cls.from_env()


def _degraded_resources(value) -> Optional[dict[str, str]]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError("degraded_resources must be an object of {fragment: neutral}")
    return dict(value)
