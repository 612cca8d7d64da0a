"""Configuration for the Clawdbot node, loaded from config.json."""

from __future__ import annotations

import json
import locale
import logging
import os
import platform
from dataclasses import dataclass, fields
from pathlib import Path
from urllib.parse import urlparse

from . import __version__

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = "ws://127.0.0.1:18789"
DEFAULT_STATE_DIR = str(Path.home() / ".clawdbot-node")

LOCATION_MODES = ("off", "while_using", "always")


def _default_locale() -> str:
    lang = locale.getlocale()[0]
    return lang or "en_US"


@dataclass
class NodeConfig:
    """Node configuration and user preferences."""

    gateway_url: str = DEFAULT_GATEWAY_URL
    auto_connect: bool = False
    state_dir: str = DEFAULT_STATE_DIR

    # Capability preferences
    allow_camera: bool = True
    location_mode: str = "off"  # off | while_using | always
    precise_location: bool = False
    allow_screen_recording: bool = False
    allow_notifications: bool = False

    # Client metadata sent in the handshake
    client_id: str = "clawdbot-node"
    client_version: str = __version__
    platform: str = platform.system().lower() or "unknown"
    locale: str = ""

    def __post_init__(self) -> None:
        if self.location_mode not in LOCATION_MODES:
            logger.warning("Unknown location_mode %r, using 'off'", self.location_mode)
            self.location_mode = "off"
        if not self.locale:
            self.locale = _default_locale()

    @classmethod
    def load(cls, path: str | Path) -> NodeConfig:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            known = {f.name for f in fields(cls)}
            filtered = {k: v for k, v in data.items() if k in known}
            return cls(**filtered)
        logger.warning("Config not found at %s, using defaults", path)
        return cls()

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        with open(path, "w") as f:
            json.dump(data, f, indent=2)

    def apply_env(self, environ: dict[str, str] | None = None) -> None:
        """Apply ``CLAWDBOT_*`` environment overrides."""
        env = os.environ if environ is None else environ
        if env.get("CLAWDBOT_GATEWAY_URL"):
            self.gateway_url = env["CLAWDBOT_GATEWAY_URL"]
        if env.get("CLAWDBOT_STATE_DIR"):
            self.state_dir = env["CLAWDBOT_STATE_DIR"]

    def reset_to_defaults(self) -> None:
        defaults = NodeConfig()
        for f in fields(self):
            if f.name != "state_dir":
                setattr(self, f.name, getattr(defaults, f.name))

    @property
    def current_permissions(self) -> dict[str, bool]:
        """Permission snapshot advertised in the connect request."""
        return {
            "camera.capture": self.allow_camera,
            "screen.record": self.allow_screen_recording,
            "location": self.location_mode != "off",
        }

    @property
    def gateway_url_valid(self) -> bool:
        parsed = urlparse(self.gateway_url)
        return parsed.scheme in ("ws", "wss") and bool(parsed.hostname)
