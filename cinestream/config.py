from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from shutil import which
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .realdebrid import DEFAULT_RESOLVE_DEADLINE

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")) / "cinestream"

# env var -> settings field
ENV_OVERRIDES = {
    "REALDEBRID": "realdebrid_token",
    "CINESTREAM_PLAYER": "player",
    "CINESTREAM_PROXY_PREFIX": "proxy_prefix",
}


class Settings(BaseModel):
    # Optional Real-Debrid API token; if blank, streams are played without unlocking
    realdebrid_token: str = ""
    player: str = Field("mpv", pattern=r"^(mpv|vlc|clapper)$")
    request_timeout: float = Field(20.0, gt=0)
    resolve_deadline: float = Field(DEFAULT_RESOLVE_DEADLINE, gt=0)
    # Optional: https://host/path?destination= prefix for catalog and Torrentio requests
    proxy_prefix: str = ""

    @property
    def unlock_enabled(self) -> bool:
        return bool(self.realdebrid_token.strip())


class ConfigManager:
    def __init__(self, path: Optional[Path] = None, *, dotenv_path: Optional[Path] = None) -> None:
        self.path = path or (CONFIG_DIR / "config.json")
        self.dotenv_path = dotenv_path or Path(".env")

    def _read_file(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError(f"{self.path} must hold a JSON object")
        return raw

    def load(self, *, interactive: bool = True) -> Settings:
        # .env participates as environment, never overriding real variables
        if self.dotenv_path.exists():
            load_dotenv(self.dotenv_path, override=False)
        try:
            raw = self._read_file()
        except ValueError as e:
            logger.warning("Ignoring unreadable config %s: %s", self.path, e)
            raw = {}
        for env_name, field in ENV_OVERRIDES.items():
            val = os.environ.get(env_name)
            if val is not None and val.strip():
                raw[field] = val.strip()
        try:
            return Settings(**raw)
        except ValidationError as e:
            if not interactive:
                raise
            logger.warning("Invalid configuration in %s: %s", self.path, e)
            return self.interactive_setup()

    def save(self, settings: Settings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as f:
            json.dump(settings.model_dump(), f, indent=2)

    def interactive_setup(self) -> Settings:
        print("-- cinestream initial setup --")
        found = [p for p in ("mpv", "vlc", "clapper") if which(p)]
        default_player = found[0] if found else "mpv"
        pref = input(f"Preferred player (mpv/vlc/clapper) [{default_player}]: ").strip().lower()
        player = pref if pref in {"mpv", "vlc", "clapper"} else default_player
        if not found:
            print("No supported player found on PATH; install mpv, vlc or clapper.")
        token = input("Real-Debrid API token (optional, press Enter to skip): ").strip()
        proxy_prefix = input("Proxy prefix for catalog requests (optional, press Enter to skip): ").strip()
        settings = Settings(realdebrid_token=token, player=player, proxy_prefix=proxy_prefix)
        self.save(settings)
        print(f"Saved config to {self.path}")
        return settings
